"""Test that the project setup is working correctly."""

import artist_shares_sync


def test_version() -> None:
    """Test that version is defined."""
    assert artist_shares_sync.__version__ == "0.1.0"


def test_import_modules() -> None:
    """Test that all submodules can be imported."""
    from artist_shares_sync import chain
    from artist_shares_sync import financials
    from artist_shares_sync import ingestor
    from artist_shares_sync import ledger
    from artist_shares_sync import storage

    assert chain is not None
    assert financials is not None
    assert ingestor is not None
    assert ledger is not None
    assert storage is not None
