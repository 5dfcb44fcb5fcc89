"""
Engine settings resolved once from the Flask config and passed to every
component explicitly.
"""

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class EngineSettings:
    cloudflare_account_id: str = ''
    cloudflare_api_token: str = ''
    cloudflare_api_base: str = 'https://api.cloudflare.com/client/v4'
    d1_database_id: str = ''
    kv_namespace_id: str = ''
    r2_bucket: str = ''
    r2_access_key_id: str = ''
    r2_secret_access_key: str = ''
    r2_endpoint_url: Optional[str] = None
    r2_region: str = 'auto'
    retention_days: int = 30
    encryption_key: str = ''
    google_client_id: str = ''
    google_client_secret: str = ''
    drive_chunk_size: int = 8 * 1024 * 1024
    drive_resumable_threshold: int = 8 * 1024 * 1024
    run_deadline_seconds: Optional[int] = 1800
    lease_ttl_seconds: int = 3600
    export_poll_interval: float = 5
    export_max_polls: int = 60
    http_timeout: float = 60

    @property
    def drive_credentials_configured(self) -> bool:
        return bool(self.encryption_key and self.google_client_id and self.google_client_secret)

    @classmethod
    def from_config(cls, config) -> 'EngineSettings':
        """
        Build settings from a Flask config mapping.

        Args:
            config: app.config (or any mapping with the same keys)
        """
        endpoint = config.get('R2_ENDPOINT_URL') or None
        if endpoint is None and config.get('CLOUDFLARE_ACCOUNT_ID'):
            endpoint = f"https://{config['CLOUDFLARE_ACCOUNT_ID']}.r2.cloudflarestorage.com"

        deadline = config.get('BACKUP_RUN_DEADLINE_SECONDS', 1800)

        return cls(
            cloudflare_account_id=config.get('CLOUDFLARE_ACCOUNT_ID', ''),
            cloudflare_api_token=config.get('CLOUDFLARE_API_TOKEN', ''),
            cloudflare_api_base=config.get('CLOUDFLARE_API_BASE') or cls.cloudflare_api_base,
            d1_database_id=config.get('D1_DATABASE_ID', ''),
            kv_namespace_id=config.get('KV_NAMESPACE_ID', ''),
            r2_bucket=config.get('R2_BUCKET', ''),
            r2_access_key_id=config.get('R2_ACCESS_KEY_ID', ''),
            r2_secret_access_key=config.get('R2_SECRET_ACCESS_KEY', ''),
            r2_endpoint_url=endpoint,
            r2_region=config.get('R2_REGION') or 'auto',
            retention_days=max(1, int(config.get('BACKUP_RETENTION_DAYS', 30))),
            encryption_key=config.get('BACKUP_ENCRYPTION_KEY', ''),
            google_client_id=config.get('GOOGLE_CLIENT_ID', ''),
            google_client_secret=config.get('GOOGLE_CLIENT_SECRET', ''),
            drive_chunk_size=config.get('DRIVE_CHUNK_SIZE', cls.drive_chunk_size),
            drive_resumable_threshold=config.get('DRIVE_RESUMABLE_THRESHOLD', cls.drive_resumable_threshold),
            run_deadline_seconds=deadline if deadline and deadline > 0 else None,
            lease_ttl_seconds=config.get('BACKUP_LEASE_TTL_SECONDS', 3600),
            export_poll_interval=config.get('EXPORT_POLL_INTERVAL_SECONDS', 5),
            export_max_polls=config.get('EXPORT_MAX_POLLS', 60),
            http_timeout=config.get('HTTP_TIMEOUT_SECONDS', 60),
        )
