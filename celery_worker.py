#!/usr/bin/env python3
"""
Celery worker for the ClimaSite storefront.
Delivers order confirmation / shipment / cancellation emails.
"""

from dotenv import load_dotenv

load_dotenv()

if __name__ == "__main__":
    from core.celery import celery_app

    celery_app.start([
        "worker",
        "--loglevel=info",
        "--concurrency=2",
        "--queues=celery",
        "--without-gossip",
        "--without-mingle",
    ])
