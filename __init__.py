"""
Homedesk

A personal desktop of small apps (photo gallery, date ideas list, music
player, message viewer) whose data is kept in S3-compatible storage
(Cloudflare R2, Backblaze B2, AWS S3, generic S3) or a local folder.

Repository Structure:
- shared/: Validators, models, config and shared constants
- cloud_store/: Storage providers and the storage gateway
- desk/: App controllers, desktop registry and CLI
- tests/: Unit and integration tests
"""
