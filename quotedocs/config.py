"""quotedocs configuration, loaded from environment / .env file."""

from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_prefix="QUOTEDOCS_", extra="ignore")

    env: str = "development"
    log_level: str = "INFO"
    database_url: str = "sqlite+aiosqlite:///./quotedocs.db"
    cors_origins: list[str] = ["http://localhost:3000"]

    # Paths (relative to project root)
    templates_dir: Path = Path("templates")  # YAML template seeds
    quotations_dir: Path = Path("quotations")  # YAML quotation records

    # Company identity merged into every render context
    company_name: str = "ASP Cranes Pvt. Ltd."
    company_address: str = "Industrial Area, Pune, Maharashtra 411019"
    company_phone: str = "+91 99999 88888"
    company_email: str = "sales@aspcranes.com"
    company_website: str = "www.aspcranes.com"

    currency_symbol: str = "₹"
    quotation_validity_days: int = 15
    default_scope: str = "quotation"

    # PDF engine (headless Chromium via Playwright)
    pdf_headless: bool = True
    pdf_browser_args: list[str] = [
        "--no-sandbox",
        "--disable-setuid-sandbox",
        "--disable-dev-shm-usage",
        "--disable-gpu",
    ]
    pdf_timeout_seconds: float = 30.0
    batch_concurrency: int = 4

    @property
    def company(self) -> dict[str, str]:
        return {
            "name": self.company_name,
            "address": self.company_address,
            "phone": self.company_phone,
            "email": self.company_email,
            "website": self.company_website,
        }


settings = Settings()
