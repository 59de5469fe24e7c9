"""
Static platform configuration consumed by the scraper layer.

KNOWN_DOMAINS maps hostnames to platform names for URL-based detection.
PLATFORM_PROFILES holds the canonical profile URL and the extraction rules
for the platforms the username scraper understands natively; everything else
goes through generic extraction.
"""

import re
from typing import Optional
from urllib.parse import urlparse

GENERIC = "generic"

KNOWN_DOMAINS: dict[str, str] = {
    "github.com": "github",
    "gitlab.com": "gitlab",
    "twitter.com": "twitter",
    "x.com": "twitter",
    "instagram.com": "instagram",
    "linkedin.com": "linkedin",
    "facebook.com": "facebook",
    "tiktok.com": "tiktok",
    "reddit.com": "reddit",
    "youtube.com": "youtube",
    "threads.net": "threads",
    "pinterest.com": "pinterest",
    "medium.com": "medium",
    "dev.to": "devto",
    "twitch.tv": "twitch",
    "steamcommunity.com": "steam",
    "keybase.io": "keybase",
    "t.me": "telegram",
    "soundcloud.com": "soundcloud",
    "behance.net": "behance",
    "dribbble.com": "dribbble",
    "stackoverflow.com": "stackoverflow",
    "news.ycombinator.com": "hackernews",
}

SUPPORTED_PLATFORMS: frozenset[str] = frozenset(KNOWN_DOMAINS.values())

# First path segment (or the pattern's group) is the handle.
USERNAME_PATTERNS: dict[str, re.Pattern] = {
    "github": re.compile(r"github\.com/([^/?#]+)", re.IGNORECASE),
    "gitlab": re.compile(r"gitlab\.com/([^/?#]+)", re.IGNORECASE),
    "twitter": re.compile(r"(?:twitter|x)\.com/([^/?#]+)", re.IGNORECASE),
    "instagram": re.compile(r"instagram\.com/([^/?#]+)", re.IGNORECASE),
    "linkedin": re.compile(r"linkedin\.com/in/([^/?#]+)", re.IGNORECASE),
    "facebook": re.compile(r"facebook\.com/([^/?#]+)", re.IGNORECASE),
    "tiktok": re.compile(r"tiktok\.com/@?([^/?#]+)", re.IGNORECASE),
    "reddit": re.compile(r"reddit\.com/(?:user|u)/([^/?#]+)", re.IGNORECASE),
    "youtube": re.compile(r"youtube\.com/@([^/?#]+)", re.IGNORECASE),
    "medium": re.compile(r"medium\.com/@([^/?#]+)", re.IGNORECASE),
    "twitch": re.compile(r"twitch\.tv/([^/?#]+)", re.IGNORECASE),
    "keybase": re.compile(r"keybase\.io/([^/?#]+)", re.IGNORECASE),
    "telegram": re.compile(r"t\.me/([^/?#]+)", re.IGNORECASE),
}

# Extraction rules: payload field -> CSS selector.
PLATFORM_PROFILES: dict[str, dict] = {
    "github": {
        "url": "https://github.com/{username}",
        "selectors": {
            "display_name": '[itemprop="name"]',
            "username": '[itemprop="additionalName"]',
            "bio": '[itemprop="description"], .user-profile-bio',
            "location": '[itemprop="homeLocation"], [itemprop="location"]',
            "website": '[itemprop="url"] a, [itemprop="url"]',
            "avatar_url": 'meta[property="og:image"]',
            "followers": 'a[href$="?tab=followers"] .text-bold, a[href$="followers"] .Counter',
            "following": 'a[href$="?tab=following"] .text-bold, a[href$="following"] .Counter',
            "posts": 'a[href$="?tab=repositories"] .Counter, [href$="repositories"] .Counter',
            "created_at": "relative-time[datetime], [datetime]",
        },
    },
    "twitter": {
        "url": "https://x.com/{username}",
        "selectors": {
            "username": '[data-testid="UserName"]',
            "display_name": '[data-testid="UserDisplayName"]',
            "bio": '[data-testid="UserDescription"]',
            "location": '[data-testid="UserLocation"]',
            "website": '[data-testid="UserUrl"]',
            "followers": 'a[href$="/followers"] span',
            "following": 'a[href$="/following"] span',
            "posts": '[data-testid="UserTweets"]',
        },
    },
    "instagram": {
        "url": "https://www.instagram.com/{username}/",
        "selectors": {
            "username": "header h2",
            "display_name": "header h1, header section span",
            "bio": "header section div span",
            "followers": 'a[href$="followers/"] span',
            "following": 'a[href$="following/"] span',
            "posts": "header li span",
        },
    },
    "linkedin": {
        "url": "https://www.linkedin.com/in/{username}",
        "selectors": {
            "display_name": ".text-heading-xlarge, .top-card-layout__title",
            "bio": ".top-card__subtitle, .top-card-layout__headline",
            "location": ".top-card__location, .top-card__subline-item",
            "website": ".top-card__website a",
            "followers": ".top-card__followers-count",
        },
    },
}


def host_of(url: str) -> str:
    try:
        host = urlparse(url).hostname or ""
    except ValueError:
        return ""
    return host.lower()


def detect_platform(url: str) -> str:
    """Platform name for *url*'s host (exact or subdomain match), else generic."""
    host = host_of(url)
    if not host:
        return GENERIC
    for domain, platform in KNOWN_DOMAINS.items():
        if host == domain or host.endswith("." + domain):
            return platform
    return GENERIC


def normalize_platform(name: Optional[str]) -> Optional[str]:
    """Canonical name for a declared platform, or None if unrecognized."""
    if not name:
        return None
    key = name.strip().lower()
    if key in ("x", "twitter/x"):
        key = "twitter"
    return key if key in SUPPORTED_PLATFORMS else None


def extract_username(url: str, platform: str) -> Optional[str]:
    """Pull the account handle out of a profile URL."""
    pattern = USERNAME_PATTERNS.get(platform)
    if pattern is not None:
        match = pattern.search(url)
        if match:
            return match.group(1).lstrip("@")
    try:
        path = urlparse(url).path
    except ValueError:
        return None
    segments = [s for s in path.split("/") if s]
    return segments[-1].lstrip("@") if segments else None


def profile_url(platform: str, username: str) -> Optional[str]:
    profile = PLATFORM_PROFILES.get(platform)
    if profile is None or not username:
        return None
    return profile["url"].format(username=username)
