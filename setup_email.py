"""
Email Setup for Library System - SMTP Configuration
Run this script to test the settings the reminder sweeps send with
"""

import os
import smtplib

from notifications import send_email_via_smtp


def test_smtp_connection():
    print("🔧 Library Email Setup Test")
    print("=" * 40)

    server = input("SMTP server [smtp.gmail.com]: ").strip() or 'smtp.gmail.com'
    email = input("Enter the sending email address: ").strip()

    print("\n📱 For Gmail you need an App Password (not your regular password)")
    print("   1. Go to: https://myaccount.google.com/apppasswords")
    print("   2. Generate an app password for 'Library System'")
    print("   3. Use the 16-character password below\n")

    app_password = input("Enter your SMTP password: ").strip()

    os.environ['SMTP_SERVER'] = server
    os.environ['SMTP_USERNAME'] = email
    os.environ['SMTP_PASSWORD'] = app_password
    os.environ['FROM_EMAIL'] = email

    try:
        print(f"\n🔗 Testing connection to {server}...")
        send_email_via_smtp(email, "Library System - Email Test Success",
                            "✅ Your library reminder email is working!")

        print("✅ SUCCESS! Email configuration works!")
        print("\n🎯 Set these environment variables before starting the app:")
        print(f'export SMTP_SERVER="{server}"')
        print(f'export SMTP_USERNAME="{email}"')
        print(f'export SMTP_PASSWORD="{app_password}"')
        print(f'export FROM_EMAIL="{email}"')
        print("\n   Optional fallback: BREVO_API_KEY, BREVO_SENDER_EMAIL, BREVO_SENDER_NAME")

    except smtplib.SMTPAuthenticationError:
        print("❌ Authentication failed!")
        print("   • Make sure you're using an App Password, not regular password")
        print("   • Enable 2-Factor Authentication first")

    except (smtplib.SMTPException, OSError) as e:
        print(f"❌ Connection failed: {e}")
        print("   • Check your internet connection")
        print("   • Verify the server name and port (SMTP_PORT, default 587)")


if __name__ == "__main__":
    test_smtp_connection()
