from __future__ import annotations

from datetime import date

from conftest import PdfStrategy

from lien_crawler.engine import DocumentRetriever, Pacer
from lien_crawler.infra import RecordStore
from lien_crawler.models import LienRecord
from lien_crawler.repair import DocumentRepairer


def _missing(store: RecordStore, jurisdiction_id: str, number: str) -> LienRecord:
    return store.upsert_lien(
        LienRecord(
            jurisdiction_id=jurisdiction_id,
            recording_number=number,
            record_date=date(2024, 1, 15),
        )
    )


def _repairer(repository, store, strategy) -> DocumentRepairer:  # noqa: ANN001
    pacer = Pacer(sleep=lambda seconds: None)
    retriever = DocumentRetriever([strategy], pacer, store)
    return DocumentRepairer(repository, store, retriever, pacer)


def test_repair_attaches_recovered_documents(
    temp_config_repository, profile_factory, record_store
) -> None:
    temp_config_repository.save_profile(profile_factory())
    first = _missing(record_store, "test-county", "20240000001")
    _missing(record_store, "retired-county", "20240000002")

    strategy = PdfStrategy()
    summary = _repairer(temp_config_repository, record_store, strategy).repair()

    assert (summary.examined, summary.repaired, summary.still_missing) == (2, 1, 0)
    assert summary.skipped == ["20240000002"]
    assert strategy.urls == ["https://records.example.gov/pdf/20240000001.pdf"]
    repaired = record_store.get_lien_by_id(first.id)
    assert record_store.get_blob(repaired.document_id).filename == "20240000001.pdf"


def test_repair_counts_documents_still_missing(
    temp_config_repository, profile_factory, record_store
) -> None:
    temp_config_repository.save_profile(profile_factory())
    _missing(record_store, "test-county", "20240000001")
    _missing(record_store, "test-county", "20240000002")

    repairer = _repairer(
        temp_config_repository, record_store, PdfStrategy(payload=b"<html>gone</html>")
    )
    summary = repairer.repair(jurisdiction_id="test-county", limit=1)

    assert (summary.examined, summary.repaired, summary.still_missing) == (1, 0, 1)
    assert len(record_store.liens_missing_documents()) == 2
