"""Document number generator — format, per-namespace sequences, padding."""

from datetime import datetime, timezone

from app.models import db
from app.models.dynamic_document import DocumentNumberSequence
from app.services import document_number

YEAR = datetime.now(timezone.utc).year


class TestGenerate:
    def test_first_number_and_default_prefix(self):
        number = document_number.generate("dyn:visitor_pass")
        assert number == f"VISITOR_PASS-{YEAR}-0001"

    def test_sequential_within_namespace(self):
        numbers = [document_number.generate("dyn:po", "PO") for _ in range(3)]
        assert numbers == [f"PO-{YEAR}-0001", f"PO-{YEAR}-0002", f"PO-{YEAR}-0003"]

    def test_namespaces_are_independent(self):
        document_number.generate("dyn:a", "A")
        document_number.generate("dyn:a", "A")
        assert document_number.generate("dyn:b", "B") == f"B-{YEAR}-0001"

    def test_sequence_row_tracks_last_value(self):
        document_number.generate("dyn:grn", "GRN")
        document_number.generate("dyn:grn", "GRN")
        db.session.commit()
        seq = DocumentNumberSequence.query.filter_by(namespace="dyn:grn", period=YEAR).one()
        assert seq.last_value == 2

    def test_padding_from_config(self, app):
        app.config["DOCUMENT_NUMBER_PADDING"] = 6
        try:
            assert document_number.generate("dyn:wide", "W") == f"W-{YEAR}-000001"
        finally:
            app.config["DOCUMENT_NUMBER_PADDING"] = 4

    def test_rollback_releases_number(self):
        document_number.generate("dyn:tx", "TX")
        db.session.rollback()
        assert document_number.generate("dyn:tx", "TX") == f"TX-{YEAR}-0001"
