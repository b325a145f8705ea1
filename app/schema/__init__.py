"""ORM models for report jobs, report rows and webhook audits."""
