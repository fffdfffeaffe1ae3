"""
Celery tasks for background sync jobs.
"""
