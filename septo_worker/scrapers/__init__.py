from septo_worker.scrapers.base import BaseScraper
from septo_worker.scrapers.cloud_scraper import CloudScraper
from septo_worker.scrapers.mock_scraper import MockScraper
from septo_worker.scrapers.social_media_scraper import SocialMediaScraper
from septo_worker.scrapers.username_scraper import UsernameScraper

__all__ = [
    "BaseScraper",
    "CloudScraper",
    "MockScraper",
    "SocialMediaScraper",
    "UsernameScraper",
]
