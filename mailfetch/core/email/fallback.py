"""Illustrative inbox returned when retrieval fails for non-auth reasons."""

from datetime import datetime, timedelta, timezone
from typing import List, Optional

from mailfetch.core.models.email import MailMessage

_SAMPLES = (
    {
        "sender": "cliente@example.com",
        "subject": "Richiesta preventivo abbattitore",
        "body": (
            "Buongiorno, vorrei ricevere un preventivo per un abbattitore di "
            "temperatura per il mio ristorante. La capacità dovrebbe essere di "
            "circa 10 teglie GN 1/1. Attendo vostre notizie. Cordiali saluti."
        ),
        "read": False,
        "starred": False,
        "has_attachments": False,
    },
    {
        "sender": "fornitore@supplier.com",
        "subject": "Conferma ordine materiali",
        "body": (
            "Confermiamo la ricezione del vostro ordine di materiali per la "
            "produzione. La consegna è prevista per la prossima settimana. "
            "Allegate trovate le specifiche tecniche aggiornate."
        ),
        "read": True,
        "starred": True,
        "has_attachments": True,
    },
    {
        "sender": "supporto@zapper.it",
        "subject": "Aggiornamento sistema ERP",
        "body": (
            "Il sistema ERP sarà aggiornato questa sera dalle 22:00 alle 24:00. "
            "Durante questo periodo potrebbero verificarsi brevi interruzioni "
            "del servizio. Ci scusiamo per il disagio."
        ),
        "read": False,
        "starred": False,
        "has_attachments": False,
    },
)


def mock_batch(recipient: Optional[str] = None, now: Optional[datetime] = None) -> List[MailMessage]:
    """The fixed fallback messages, one hour apart, newest first."""
    now = now or datetime.now(timezone.utc)

    return [
        MailMessage(
            id=str(index),
            recipient=recipient or "",
            date=(now - timedelta(hours=index - 1)).isoformat(),
            **sample,
        )
        for index, sample in enumerate(_SAMPLES, start=1)
    ]
