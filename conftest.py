"""
Pytest root configuration.
Switches the settings to TESTING (in-memory SQLite, cache and Celery off)
before anything imports the application.
"""
import os

# Set testing environment before importing app
os.environ["TESTING"] = "True"
os.environ["DEBUG"] = "False"
os.environ["REDIS_URL"] = ""
os.environ["SMTP_USERNAME"] = ""
os.environ["SMTP_PASSWORD"] = ""
os.environ["PAYSTACK_SECRET_KEY"] = "sk_test_climasite"
