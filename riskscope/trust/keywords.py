"""
Keyword tables shared by triage, collection and scoring.

Terms are matched case-insensitively, so Indonesian and English variants
are both listed where the sources mix languages. Most tables match as
substrings; legitimacy terms go through find_affirmed_terms(), which
matches whole words and ignores negated mentions ("unregistered",
"tanpa izin OJK", "not licensed").
"""
import re
from functools import lru_cache
from typing import Dict, Iterable, List


# ── Triage buckets ────────────────────────────────

IMMEDIATE_RED_FLAGS = [
    "ponzi", "money game", "skema piramida", "pyramid scheme",
    "guaranteed profit", "guaranteed return", "keuntungan pasti", "profit pasti",
    "tanpa risiko", "risk free", "risk-free", "passive income",
    "double your money", "mlm", "cloud mining", "binary option", "robot trading",
    "arisan online", "investasi bodong", "return 10%", "return per hari",
]

POTENTIAL_CONCERNS = [
    "pinjaman online", "pinjol", "cash advance", "quick loan", "dana cepat",
    "affiliate marketing", "network marketing", "referral bonus", "bonus sponsor",
    "high return", "high yield", "crypto", "forex", "trading signal",
    "deposit minimal", "withdraw", "unregistered", "belum terdaftar",
]

LEGITIMACY_SIGNALS = [
    "registered financial", "registered with", "terdaftar di ojk", "diawasi ojk",
    "licensed", "berizin", "iso certified", "iso 9001", "listed company", "tbk",
    "public company", "market leader", "founded", "established", "since 19", "since 20",
    "regulator", "audited", "award",
]


# ── Industry tables ───────────────────────────────

INDUSTRY_MULTIPLIERS = {
    "fintech": 1.2,
    "cryptocurrency": 1.5,
    "investment": 1.4,
    "lending": 1.3,
    "banking": 0.8,
    "manufacturing": 0.7,
    "agriculture": 0.8,
    "retail": 0.9,
    "default": 1.0,
}

INDUSTRY_DETECTION = {
    "cryptocurrency": ["crypto", "bitcoin", "blockchain", "token", "nft", "defi", "kripto"],
    "investment": ["investasi", "investment", "saham", "reksa dana", "trading", "portfolio", "asset management"],
    "lending": ["lending", "loan", "pinjaman", "kredit", "p2p", "pinjol"],
    "fintech": ["fintech", "payment", "pembayaran", "e-wallet", "dompet digital", "paylater"],
    "banking": ["bank", "perbankan"],
    "manufacturing": ["manufaktur", "manufacturing", "pabrik", "factory", "industri"],
    "agriculture": ["pertanian", "agriculture", "agri", "perkebunan", "farm", "plantation"],
    "retail": ["retail", "toko", "store", "shop", "e-commerce", "marketplace"],
}

BUSINESS_CONTEXTS = {
    "traditional": ["toko", "warung", "ud ", "cv ", "koperasi", "family business", "usaha"],
    "digital": ["online", "app", "aplikasi", "platform", "digital", "website", "startup"],
    "formal": ["pt ", "tbk", "corporation", "corp", "ltd", "inc", "group", "holding"],
    "regulated": ["ojk", "bank", "insurance", "asuransi", "licensed", "berizin", "regulator", "bappebti"],
}

# Search terms keyed by industry; manufacturing doubles as the fallback table.
CONTEXT_PATTERNS: Dict[str, Dict[str, List[str]]] = {
    "fintech": {
        "legitimacy": ["izin OJK", "terdaftar OJK"],
        "fraud": ["penipuan", "pinjol ilegal"],
        "regulatory": ["OJK", "Bank Indonesia"],
    },
    "lending": {
        "legitimacy": ["terdaftar OJK", "AFPI"],
        "fraud": ["pinjol ilegal", "penagihan kasar"],
        "regulatory": ["OJK satgas waspada investasi"],
    },
    "investment": {
        "legitimacy": ["izin OJK", "anggota bursa"],
        "fraud": ["investasi bodong", "skema ponzi"],
        "regulatory": ["satgas waspada investasi", "OJK"],
    },
    "banking": {
        "legitimacy": ["LPS", "bank terdaftar"],
        "fraud": ["pembobolan", "fraud"],
        "regulatory": ["OJK", "Bank Indonesia"],
    },
    "cryptocurrency": {
        "legitimacy": ["Bappebti terdaftar", "exchange resmi"],
        "fraud": ["scam", "rug pull"],
        "regulatory": ["Bappebti", "OJK"],
    },
    "manufacturing": {
        "legitimacy": ["sertifikat ISO", "perusahaan resmi"],
        "fraud": ["penipuan", "wanprestasi"],
        "regulatory": ["Kementerian Perindustrian", "izin usaha"],
    },
    "retail": {
        "legitimacy": ["toko resmi", "official store"],
        "fraud": ["penipuan online", "barang tidak dikirim"],
        "regulatory": ["YLKI", "Kementerian Perdagangan"],
    },
}


# ── Search-result signal terms ────────────────────

FRAUD_TERMS = [
    "penipuan", "scam", "fraud", "penipu", "gugatan", "sanksi", "bermasalah",
    "bangkrut", "korban", "tertipu", "investasi bodong", "ponzi", "ilegal",
]

LEGITIMACY_TERMS = [
    "resmi", "terdaftar", "ojk", "sertifikat", "izin", "akreditasi",
    "kementerian", "official", "licensed", "certified", "registered",
]

REGULATOR_WARNING_TERMS = [
    "sanksi", "sanction", "peringatan", "warning", "daftar hitam", "blacklist",
    "satgas waspada investasi", "dibekukan", "dicabut",
]

SPAM_TERMS = ["casino", "slot gacor", "judi", "togel", "viagra", "porn", "bokep"]


# ── Legitimacy scoring weights ────────────────────

# strong 15-20, medium 10-14, basic 5-9, trivial markers ~3
LEGITIMACY_WEIGHTS = {
    "regulator": 20, "ojk": 20,
    "terdaftar": 18, "registered": 18,
    "resmi": 17, "licensed": 17, "berizin": 17,
    "iso certified": 16, "certified": 16, "sertifikat": 16,
    "npwp": 15, "nib": 15, "siup": 15,
    "audited": 14, "tbk": 14, "cv": 14,
    "fintech": 12, "finance": 12, "financial": 12,
    "industri": 11, "manufaktur": 11,
    "perusahaan": 10, "corporation": 10, "established": 10,
    "company": 8, "ltd": 8, "llc": 8,
    "inc": 7, "corp": 7,
    "official": 6, "legal": 6,
    "business": 5,
    "pt": 3, "bank": 3,
}

SUSPICIOUS_CONCERNS = [
    "guaranteed", "dijamin", "pasti untung", "tanpa risiko", "risk free",
    "limited time", "join now", "daftar sekarang", "rekrut", "downline",
]


# ── Regulatory status terms ───────────────────────

REGULATORY_STATUS_TERMS = {
    "revoked": (90, ["revoked", "dicabut", "pencabutan izin", "license revoked"]),
    "suspended": (80, ["suspended", "dibekukan", "pembekuan", "penghentian sementara"]),
    "warning_issued": (70, ["peringatan", "warning", "sanksi", "sanction", "satgas waspada investasi", "daftar hitam"]),
}

INVESTIGATION_TERMS = ["investigation", "investigasi", "penyidikan", "penyelidikan", "diperiksa", "probe"]


def find_terms(text: str, terms: Iterable[str]) -> List[str]:
    """Return every term found in text (case-insensitive, order preserved)."""
    haystack = (text or "").lower()
    return [t for t in terms if t.lower() in haystack]


# ── Negation-aware matching ───────────────────────

NEGATIONS = ["tanpa", "belum", "tidak", "bukan", "not", "without", "non", "no"]

# negator followed by up to two words, ending right where the term starts
_NEGATED_RE = re.compile(r"\b(?:" + "|".join(NEGATIONS) + r")[\s-]+(?:\w+\s+){0,2}$")
_NEGATION_WINDOW = 60


@lru_cache(maxsize=None)
def _term_pattern(term: str) -> "re.Pattern[str]":
    core = re.escape(term.strip().lower())
    # ber- marks possession in Indonesian (bersertifikat, berlisensi)
    prefix = r"(?<!\w)(?:ber)?"
    # year stems like "since 19" must still match "since 1998"
    suffix = "" if core[-1].isdigit() else r"(?!\w)"
    return re.compile(prefix + core + suffix)


def find_affirmed_terms(text: str, terms: Iterable[str]) -> List[str]:
    """Return terms found as whole words and not negated by a preceding negator."""
    haystack = (text or "").lower()
    found = []
    for term in terms:
        for match in _term_pattern(term).finditer(haystack):
            before = haystack[max(match.start() - _NEGATION_WINDOW, 0):match.start()]
            if not _NEGATED_RE.search(before):
                found.append(term)
                break
    return found
