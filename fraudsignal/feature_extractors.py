import re
import textdistance
from typing import Iterable, List, Optional, Set
from urllib.parse import urlsplit

PHONE_FORMATTING = re.compile(r"[-\s().]")
SEQUENTIAL_RUNS = ("01234", "12345", "23456", "34567", "45678", "56789", "6789")
URL_SHORTENERS = {"bit.ly", "tinyurl.com", "t.co", "goo.gl", "ow.ly", "is.gd"}
PHISHING_HOST_TERMS = {"verify", "secure", "account", "login", "update"}

CALL_INDICATORS = {"incoming call", "missed call", "phone", "dialer", "telephony", "call from", "calling"}
SMS_INDICATORS = {"messages", "sms", "messaging", "text", "google messages", "samsung messages",
                  "default sms", "android.provider.telephony"}

_IPV4_HOST = re.compile(r"^\d{1,3}\.\d{1,3}\.\d{1,3}\.\d{1,3}$")
_LONG_DIGIT_RUN = re.compile(r"\d{5,}")
_REPEATED_RUN = re.compile(r"(\d)\1{4,}")
_ALL_SAME = re.compile(r"^(\d)\1+$")
_URL = re.compile(
    r"(https?://[^\s]+|www\.[^\s]+|\b[a-z0-9-]+\.(?:com|net|org|edu|gov|mil|biz|info|mobi|name|aero|asia|jobs|museum|[a-z]{2})\b[^\s]*)",
    re.IGNORECASE,
)
_PHONE_IN_TEXT = re.compile(
    r"\+[1-9]\d{6,14}|(?:\+?91[-.\s]?)?[6-9]\d{9}|(?:\+?1[-.\s]?)?\(?[0-9]{3}\)?[-.\s]?[0-9]{3}[-.\s]?[0-9]{4}"
)


class MalformedURL(ValueError):
    pass


def contains_any(text: str, terms: Set[str]) -> List[str]:
    t = (text or "").lower()
    return [term for term in terms if term.lower() in t]

def lookalike_score(a: str, b: str) -> float:
    # Jaro-Winkler similarity as a proxy for typosquatting
    if not a or not b:
        return 0.0
    return float(textdistance.jaro_winkler(a.lower(), b.lower()))

# ---- Phone numbers ----
def normalize_phone(number: str) -> str:
    return PHONE_FORMATTING.sub("", number or "")

def digits_only(number: str) -> str:
    return re.sub(r"\D", "", number or "")

def has_repeated_run(digits: str) -> bool:
    return _REPEATED_RUN.search(digits) is not None

def has_sequential_run(digits: str) -> bool:
    return any(run in digits for run in SEQUENTIAL_RUNS)

def tail_all_same(digits: str, width: int = 7) -> bool:
    return _ALL_SAME.match(digits[-width:]) is not None

def extract_phone_number(text: str) -> Optional[str]:
    match = _PHONE_IN_TEXT.search(text or "")
    return match.group(0) if match else None

# ---- URLs ----
def extract_urls(text: str) -> List[str]:
    if not text:
        return []
    return [u.rstrip(".,;:!?)'\"") for u in _URL.findall(text)]

def url_host(url: str) -> str:
    """Lower-cased host of ``url``; scheme-less URLs are read as http."""
    candidate = url.strip()
    if "://" not in candidate:
        candidate = "http://" + candidate
    try:
        host = urlsplit(candidate).hostname
    except ValueError as e:
        raise MalformedURL(url) from e
    if not host:
        raise MalformedURL(url)
    return host.lower()

def suspicious_url_reasons(url: str, host: str, trusted_domains: Iterable[str] = ()) -> List[str]:
    reasons = []
    if host in URL_SHORTENERS:
        reasons.append("url shortener")
    if _IPV4_HOST.match(host):
        reasons.append("ip address host")
    if host.count("-") >= 2:
        reasons.append("hyphenated host")
    if contains_any(host, PHISHING_HOST_TERMS):
        reasons.append("phishing keyword in host")
    if _LONG_DIGIT_RUN.search(url):
        reasons.append("long digit sequence")
    for domain in trusted_domains:
        if host == domain or host.endswith("." + domain):
            continue
        if lookalike_score(host, domain) >= 0.9:
            reasons.append(f"look-alike of {domain}")
            break
    return reasons
