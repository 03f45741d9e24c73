import logging
import re
from collections import Counter
from datetime import datetime, timedelta
from typing import Any, Iterable, Optional

from jira_monitor.core.clock import Clock, as_utc, utcnow
from jira_monitor.schemas.issues import IssueSummary, ProcessedIssues

logger = logging.getLogger(__name__)

UNKNOWN_STATUS = "UNKNOWN"

# Jira envoie "2025-05-20T14:30:00.000+0000" : fromisoformat veut "+00:00"
_COMPACT_OFFSET = re.compile(r"([+-]\d{2})(\d{2})$")


def normalize_status(value: str) -> str:
    return value.strip().casefold()


def parse_jira_datetime(value: Any) -> Optional[datetime]:
    if not isinstance(value, str) or not value.strip():
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    text = _COMPACT_OFFSET.sub(r"\1:\2", text)
    try:
        return as_utc(datetime.fromisoformat(text))
    except ValueError:
        return None


def _name(obj: Any, attr: str) -> Optional[str]:
    if isinstance(obj, dict):
        value = obj.get(attr)
        if value:
            return str(value)
    return None


class IssueTriagePipeline:
    """
    Prend le JSON brut de /search et le réduit en un résumé exploitable :
    1. retire les issues dont le statut est dans l'ensemble exclu,
    2. résume chaque issue restante (ancienneté en jours comprise),
    3. compte les issues par statut, sans vocabulaire prédéfini.

    Un JSON mal formé donne un résultat vide plutôt qu'une exception.
    """

    def __init__(self, excluded_statuses: Iterable[str], clock: Clock = utcnow):
        self.excluded = {normalize_status(s) for s in excluded_statuses}
        self._clock = clock

    def process(self, raw: Any, now: Optional[datetime] = None) -> ProcessedIssues:
        if not isinstance(raw, dict) or not isinstance(raw.get("issues"), list):
            logger.warning("Réponse de recherche mal formée : aucun tableau 'issues'")
            return ProcessedIssues()

        now = as_utc(now or self._clock())
        items = []
        for issue in raw["issues"]:
            if not isinstance(issue, dict):
                continue
            fields = issue.get("fields")
            if not isinstance(fields, dict):
                fields = {}
            status = _name(fields.get("status"), "name") or UNKNOWN_STATUS
            if normalize_status(status) in self.excluded:
                continue
            items.append(self._summarize(issue, fields, status, now))

        counts = Counter(item.status for item in items)
        return ProcessedIssues(total=len(items), items=items, counts_by_status=dict(counts))

    def _summarize(self, issue: dict, fields: dict, status: str, now: datetime) -> IssueSummary:
        created_raw = fields.get("created")
        created = parse_jira_datetime(created_raw)
        age_days = (now - created) // timedelta(days=1) if created else 0

        return IssueSummary(
            key=str(issue.get("key") or ""),
            title=str(fields.get("summary") or ""),
            status=status,
            created=created_raw if isinstance(created_raw, str) and created_raw else None,
            assignee=_name(fields.get("assignee"), "displayName"),
            reporter=_name(fields.get("reporter"), "displayName"),
            priority=_name(fields.get("priority"), "name"),
            age_days=age_days,
        )
