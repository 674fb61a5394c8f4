"""Tenant backup service: full per-tenant exports to S3 with emailed links."""
