"""Roster CSV parsing for bulk seat import.

Accepts files exported from spreadsheets: UTF-8 with or without BOM,
``,`` or ``;`` separated, with a header row using any of the known column
names, or a bare two/three-column list (nom, prenom[, email]).
"""

import csv
import io
import logging
from typing import List, Optional, Tuple

from core.exceptions import ValidationError
from utils.normalization import strip_accents

logger = logging.getLogger(__name__)

NOM_ALIASES = {"nom", "name", "surname", "last_name", "lastname", "nom_de_famille"}
PRENOM_ALIASES = {"prenom", "first_name", "firstname", "given_name", "givenname"}
EMAIL_ALIASES = {"email", "mail", "e-mail", "courriel"}

RosterRow = Tuple[str, str, str]


def _header_key(value: str) -> str:
    return strip_accents(value).strip().lower().replace(" ", "_")


def _find_columns(header: List[str]) -> Optional[Tuple[int, int, Optional[int]]]:
    keys = [_header_key(cell) for cell in header]
    nom_idx = next((i for i, k in enumerate(keys) if k in NOM_ALIASES), None)
    prenom_idx = next((i for i, k in enumerate(keys) if k in PRENOM_ALIASES), None)
    if nom_idx is None or prenom_idx is None:
        return None
    email_idx = next((i for i, k in enumerate(keys) if k in EMAIL_ALIASES), None)
    return nom_idx, prenom_idx, email_idx


def _sniff_delimiter(sample: str) -> str:
    try:
        return csv.Sniffer().sniff(sample, delimiters=",;").delimiter
    except csv.Error:
        first_line = sample.splitlines()[0] if sample else ""
        return ";" if first_line.count(";") > first_line.count(",") else ","


def parse_roster_csv(data: bytes) -> Tuple[List[RosterRow], List[str]]:
    """Parse an uploaded roster file.

    Args:
        data: Raw file content.

    Returns:
        Tuple of (rows, errors): rows as ``(nom, prenom, email)``, errors as
        human-readable line messages.

    Raises:
        ValidationError: If the file is not UTF-8 text or is empty.
    """
    try:
        text = data.decode("utf-8-sig")
    except UnicodeDecodeError as e:
        raise ValidationError("Le fichier doit être encodé en UTF-8") from e
    if not text.strip():
        raise ValidationError("Le fichier est vide")

    delimiter = _sniff_delimiter(text[:4096])
    reader = csv.reader(io.StringIO(text), delimiter=delimiter)
    rows: List[RosterRow] = []
    errors: List[str] = []

    columns = None
    for line_no, record in enumerate(reader, start=1):
        cells = [cell.strip() for cell in record]
        if not any(cells):
            continue
        if columns is None:
            columns = _find_columns(cells)
            if columns is not None:
                # header row
                continue
            columns = (0, 1, 2)
        nom_idx, prenom_idx, email_idx = columns
        if len(cells) <= max(nom_idx, prenom_idx):
            errors.append(f"Ligne {line_no}: nom et prénom attendus")
            continue
        email = ""
        if email_idx is not None and email_idx < len(cells):
            email = cells[email_idx]
        rows.append((cells[nom_idx], cells[prenom_idx], email))

    logger.debug("Parsed roster CSV: %d rows, %d errors", len(rows), len(errors))
    return rows, errors
