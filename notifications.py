"""
Email sender used by the reminder sweeps.

Primary provider is plain SMTP (configure with setup_email.py), fallback is
the Brevo HTTP API. Settings are read from the environment on every send.
"""

import os
import smtplib
import sys
from email.mime.text import MIMEText

import requests

BREVO_API_URL = 'https://api.brevo.com/v3/smtp/email'
REQUEST_TIMEOUT = 10  # seconds


class EmailNotConfigured(RuntimeError):
    pass


def send_email_via_smtp(to, subject, body):
    server_name = os.environ.get('SMTP_SERVER')
    username = os.environ.get('SMTP_USERNAME')
    password = os.environ.get('SMTP_PASSWORD')
    if not server_name or not username or not password:
        raise EmailNotConfigured('SMTP_SERVER, SMTP_USERNAME and SMTP_PASSWORD must be set')
    sender = os.environ.get('FROM_EMAIL', username)
    port = int(os.environ.get('SMTP_PORT', 587))

    msg = MIMEText(body)
    msg['Subject'] = subject
    msg['From'] = sender
    msg['To'] = to

    server = smtplib.SMTP(server_name, port, timeout=REQUEST_TIMEOUT)
    try:
        server.starttls()
        server.login(username, password)
        server.send_message(msg)
    finally:
        server.quit()
    return {'provider': 'SMTP', 'message_id': msg.get('Message-ID', 'unknown')}


def send_email_via_brevo(to, subject, body):
    api_key = os.environ.get('BREVO_API_KEY')
    if not api_key:
        raise EmailNotConfigured('BREVO_API_KEY not configured')
    sender = {
        'name': os.environ.get('BREVO_SENDER_NAME', 'Library'),
        'email': os.environ.get('BREVO_SENDER_EMAIL', os.environ.get('FROM_EMAIL', '')),
    }
    resp = requests.post(
        BREVO_API_URL,
        json={
            'sender': sender,
            'to': [{'email': to}],
            'subject': subject,
            'textContent': body,
            'replyTo': sender,
            'headers': {'Auto-Submitted': 'auto-generated'},
        },
        headers={'api-key': api_key, 'Content-Type': 'application/json'},
        timeout=REQUEST_TIMEOUT,
    )
    resp.raise_for_status()
    data = resp.json() if resp.content else {}
    return {'provider': 'Brevo', 'message_id': data.get('messageId', 'unknown')}


PROVIDERS = [
    ('SMTP', send_email_via_smtp),
    ('Brevo', send_email_via_brevo),
]


def send_email_with_fallback(to, subject, body):
    """Try each provider in turn; return the first success or the last error"""
    last_error = None
    for name, send in PROVIDERS:
        try:
            result = send(to, subject, body)
        except (EmailNotConfigured, smtplib.SMTPException, OSError, requests.RequestException) as e:
            print(f"[email] {name} failed: {e}", file=sys.stderr, flush=True)
            last_error = e
            continue
        print(f"[email] Sent '{subject}' to {to} via {name}", file=sys.stderr, flush=True)
        return {'success': True, **result}
    return {
        'success': False,
        'error': f'Failed to send email via all providers. Last error: {last_error}',
    }
