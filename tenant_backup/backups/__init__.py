"""
Tenant Backup Module

Exports every operational section of one tenant into a single XLSX workbook,
optionally bundles the tenant's referenced images into a ZIP archive, stores
both in S3 and emails time-limited download links to the requester.
Runs on Celery; documents and archives are streamed straight into S3.
"""
