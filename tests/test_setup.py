"""Test that the project setup is working correctly."""

import openbook_indexer


def test_version() -> None:
    """Test that version is defined."""
    assert openbook_indexer.__version__ == "0.1.0"


def test_import_modules() -> None:
    """Test that all submodules can be imported."""
    from openbook_indexer import decoder
    from openbook_indexer import ingestor
    from openbook_indexer import scan
    from openbook_indexer import storage

    # Just verify imports work
    assert decoder is not None
    assert ingestor is not None
    assert scan is not None
    assert storage is not None
