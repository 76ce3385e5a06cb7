# ============================================================================
# IMPORTS
# ============================================================================

# Standard library imports
import contextlib
import sys

# Third-party imports
from flask import Flask, jsonify, request

# Local imports
import database
from borrowing import (
    approve_borrow_request,
    create_borrow_request,
    get_borrow_record,
    list_borrow_records,
    reject_borrow_request,
    return_book,
)
from fines import (
    get_daily_fine_rate,
    get_loan_period_days,
    initialize_default_configs,
    set_daily_fine_rate,
    set_loan_period_days,
)
from inventory import get_item, is_item_referenced, reconcile_inventory
from reminders import (
    get_reminder_stats,
    recalculate_overdue_fines,
    run_due_soon_sweep,
    run_overdue_fine_sweep,
    run_overdue_notice_sweep,
)

# ============================================================================
# APPLICATION SETUP
# ============================================================================

app = Flask(__name__)

# Database path configuration
app.config['DATABASE'] = str(database.DB_PATH)

# Error kind -> HTTP status
ERROR_STATUS = {
    'RecordNotFound': 404,
    'ItemNotFound': 404,
    'ItemUnavailable': 409,
    'InvalidTransition': 409,
    'ConcurrencyConflict': 409,
    'OverCapacity': 409,
    'ValidationError': 400,
    'StorageError': 500,
}


@contextlib.contextmanager
def db_connection():
    conn = database.connect(app.config['DATABASE'])
    try:
        yield conn
    finally:
        conn.close()


def respond(result, **extra):
    """Turn an engine Result into the JSON response the UI expects"""
    payload = result.to_dict()
    if not result.success:
        return jsonify(payload), ERROR_STATUS.get(result.error, 500)
    payload.update(extra)
    return jsonify(payload)


def request_data():
    return request.get_json(silent=True) or request.form.to_dict() or {}


# ============================================================================
# API ROUTES - BORROW LIFECYCLE
# ============================================================================

@app.route('/borrow_requests', methods=['POST'])
def add_borrow_request():
    """File a borrow request for admin approval"""
    data = request_data()
    required_fields = ['user_id', 'book_id']
    for field in required_fields:
        if not data.get(field):
            return jsonify({'success': False, 'error': 'ValidationError',
                            'message': f'Missing required field: {field}'}), 400
        try:
            data[field] = int(data[field])
        except (TypeError, ValueError):
            return jsonify({'success': False, 'error': 'ValidationError',
                            'message': f'Invalid field: {field}'}), 400

    with db_connection() as conn:
        result = create_borrow_request(conn, data['user_id'], data['book_id'])
    if not result.success:
        return respond(result)
    return respond(result, data=result.data.to_dict()), 201


@app.route('/borrow_requests')
def borrow_requests():
    """List borrow records with user and book details"""
    status = request.args.get('status')
    user_id = request.args.get('user_id', type=int)
    with db_connection() as conn:
        result = list_borrow_records(conn, status=status, user_id=user_id)
    if not result.success:
        return respond(result)
    return respond(result, data=result.data)


@app.route('/borrow_requests/<int:record_id>')
def borrow_request(record_id):
    with db_connection() as conn:
        result = get_borrow_record(conn, record_id)
    if not result.success:
        return respond(result)
    return respond(result, data=result.data.to_dict())


@app.route('/approve_request/<int:record_id>', methods=['POST'])
def approve_request(record_id):
    """Approve a pending request; the book gets a due date and one copy is taken"""
    data = request_data()
    with db_connection() as conn:
        result = approve_borrow_request(conn, record_id, borrowed_by=data.get('borrowed_by'))
    if not result.success:
        return respond(result)
    return respond(result, message='Borrow request approved', data=result.data.to_dict())


@app.route('/reject_request/<int:record_id>', methods=['POST'])
def reject_request(record_id):
    with db_connection() as conn:
        result = reject_borrow_request(conn, record_id)
    if not result.success:
        return respond(result)
    return respond(result, message='Borrow request rejected')


# Book return endpoint
@app.route('/return_book', methods=['POST'])
def return_book_route():
    """Process a book return and report any fine owed"""
    data = request_data()
    try:
        record_id = int(data.get('record_id'))
    except (TypeError, ValueError):
        return jsonify({'success': False, 'error': 'ValidationError',
                        'message': 'Missing or invalid field: record_id'}), 400

    with db_connection() as conn:
        result = return_book(conn, record_id, as_of=data.get('as_of') or None,
                             returned_by=data.get('returned_by'))
    if not result.success:
        return respond(result)

    summary = result.data
    if summary.is_overdue:
        message = f'Book returned {summary.days_overdue} day(s) late. Fine: ${summary.fine_amount}'
    else:
        message = 'Book returned successfully'
    return respond(result, message=message, data=summary.to_dict())


# ============================================================================
# API ROUTES - AUTOMATION
# ============================================================================

def _sweep_response(result, label):
    if not result.success:
        return respond(result)
    outcomes = [outcome.to_dict() for outcome in result.data]
    return respond(result, message=f'{label} for {len(outcomes)} record(s)', results=outcomes)


@app.route('/send_due_reminders', methods=['POST'])
def send_due_reminders():
    with db_connection() as conn:
        result = run_due_soon_sweep(conn)
    return _sweep_response(result, 'Processed due soon reminders')


@app.route('/send_overdue_reminders', methods=['POST'])
def send_overdue_reminders():
    with db_connection() as conn:
        result = run_overdue_notice_sweep(conn)
    return _sweep_response(result, 'Processed overdue reminders')


@app.route('/update_overdue_fines', methods=['POST'])
def update_overdue_fines():
    """Assign fines to overdue books; force=true recalculates existing fines too"""
    data = request_data()
    custom_rate = data.get('fineAmount')
    force = str(data.get('force', '')).lower() in ('1', 'true', 'yes')
    with db_connection() as conn:
        if force:
            result = recalculate_overdue_fines(conn, custom_rate=custom_rate)
        else:
            result = run_overdue_fine_sweep(conn, custom_rate=custom_rate)
    return _sweep_response(result, 'Updated fines')


@app.route('/reminder_stats')
def reminder_stats():
    with db_connection() as conn:
        result = get_reminder_stats(conn)
    if not result.success:
        return respond(result)
    return respond(result, stats=result.data)


# ============================================================================
# API ROUTES - SETTINGS AND INVENTORY
# ============================================================================

@app.route('/fine_config', methods=['GET', 'POST'])
def fine_config():
    """Read or update the daily fine amount and loan period"""
    with db_connection() as conn:
        if request.method == 'POST':
            data = request_data()
            if data.get('fineAmount') is None and data.get('loanPeriodDays') is None:
                return jsonify({'success': False, 'error': 'ValidationError',
                                'message': 'Provide fineAmount or loanPeriodDays'}), 400
            updated_by = data.get('updatedBy')
            if data.get('fineAmount') is not None:
                result = set_daily_fine_rate(conn, data['fineAmount'], updated_by=updated_by)
                if not result.success:
                    return respond(result)
            if data.get('loanPeriodDays') is not None:
                result = set_loan_period_days(conn, data['loanPeriodDays'], updated_by=updated_by)
                if not result.success:
                    return respond(result)
        else:
            result = initialize_default_configs(conn)
            if not result.success:
                return respond(result)

        rate = get_daily_fine_rate(conn)
        days = get_loan_period_days(conn)
    if not rate.success:
        return respond(rate)
    if not days.success:
        return respond(days)
    return respond(rate, fineAmount=str(rate.data), loanPeriodDays=days.data)


@app.route('/books/<int:book_id>/availability')
def book_availability(book_id):
    """Copies on hand, and whether any pending or active borrow blocks deleting the book"""
    with db_connection() as conn:
        result = get_item(conn, book_id)
        if not result.success:
            return respond(result)
        referenced = is_item_referenced(conn, book_id)
    if not referenced.success:
        return respond(referenced)
    return respond(result, data=result.data.to_dict(), referenced=referenced.data)


@app.route('/reconcile_inventory', methods=['POST'])
def reconcile_inventory_route():
    """Repair available copies that drifted from the borrow records"""
    with db_connection() as conn:
        result = reconcile_inventory(conn)
    if not result.success:
        return respond(result)
    return respond(result, message=f'Corrected {len(result.data)} book(s)', corrections=result.data)


# ============================================================================
# APPLICATION STARTUP
# ============================================================================

def init_db(db_path):
    """Verify database connectivity and schema, then seed default settings"""
    database.recreate_database_if_invalid(db_path)
    database.check_setup(db_path)
    conn = database.connect(db_path)
    try:
        result = initialize_default_configs(conn)
    finally:
        conn.close()
    if not result.success:
        print(f"[DB SETUP] Could not seed default settings: {result.message}", file=sys.stderr, flush=True)


init_db(app.config['DATABASE'])


# ============================================================================
# APPLICATION ENTRY POINT
# ============================================================================

if __name__ == '__main__':
    # For development only - use gunicorn for production
    app.run(host='0.0.0.0', port=5000, debug=False)

# WSGI entry point for production servers
application = app
