"""Domain normalization and the candidate exclusion policy."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from urllib.parse import urlparse

DEFAULT_EXCLUDED_DOMAINS: frozenset[str] = frozenset(
    {
        "linkedin.com",
        "indeed.com",
        "glassdoor.com",
        "nytimes.com",
        "techcrunch.com",
        "crunchbase.com",
        "bloomberg.com",
        "reuters.com",
        "wsj.com",
        "forbes.com",
        "businessinsider.com",
        "cnbc.com",
        "twitter.com",
        "x.com",
        "facebook.com",
        "instagram.com",
        "youtube.com",
        "wikipedia.org",
        "github.com",
        "medium.com",
        "reddit.com",
    }
)


def normalize_domain(value: str) -> str:
    """Lower-case a domain or URL and strip protocol, ``www.``, path and port."""
    domain = value.strip().lower()
    for prefix in ("https://", "http://"):
        if domain.startswith(prefix):
            domain = domain[len(prefix) :]
            break
    if domain.startswith("www."):
        domain = domain[4:]
    domain = domain.split("/", 1)[0]
    return domain.split(":", 1)[0]


def host_of(url: str) -> str:
    """Normalized host of a URL, or an empty string when it has none."""
    try:
        hostname = urlparse(url).hostname
    except ValueError:
        return ""
    return normalize_domain(hostname) if hostname else ""


def domain_matches_suffix(domain: str, suffix: str) -> bool:
    suffix = normalize_domain(suffix)
    return domain == suffix or domain.endswith(f".{suffix}")


def is_valid_domain(domain: str) -> bool:
    labels = domain.split(".")
    return len(labels) >= 2 and all(labels) and len(labels[-1]) >= 2


def partition_domains(values: Iterable[str]) -> tuple[list[str], list[str]]:
    """Normalize and dedupe user-supplied domains, split into (valid, invalid) in input order."""
    unique = list(dict.fromkeys(normalize_domain(value) for value in values))
    valid = [domain for domain in unique if is_valid_domain(domain)]
    invalid = [domain for domain in unique if not is_valid_domain(domain)]
    return valid, invalid


def company_name_from_domain(domain: str) -> str:
    return normalize_domain(domain).split(".", 1)[0]


@dataclass(frozen=True)
class DomainExclusions:
    """Injectable set of domain suffixes that never produce candidates."""

    suffixes: frozenset[str]

    @classmethod
    def default(cls) -> DomainExclusions:
        return cls(DEFAULT_EXCLUDED_DOMAINS)

    def extended(self, extra: Iterable[str]) -> DomainExclusions:
        additions = {normalize_domain(item) for item in extra if item and item.strip()}
        return DomainExclusions(self.suffixes | additions)

    def is_excluded(self, domain: str) -> bool:
        normalized = normalize_domain(domain)
        return any(domain_matches_suffix(normalized, suffix) for suffix in self.suffixes)

    def accepts(self, domain: str) -> bool:
        """True when the domain is structurally valid and not excluded."""
        normalized = normalize_domain(domain)
        return bool(normalized) and not self.is_excluded(normalized) and is_valid_domain(normalized)
