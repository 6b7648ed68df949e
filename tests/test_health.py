import pytest

# Import the necessary modules from the s3backup package
try:
    import s3backup
    from s3backup.capture import main as capture_main
    from s3backup.cli import main as cli_main
except ImportError as e:
    pytest.skip(f"Failed to import s3backup modules: {e}", allow_module_level=True)


def test_imports():
    """Test that the public API and both entry points can be imported."""
    assert s3backup.BackupOperations is not None
    assert s3backup.BackupConfig is not None
    assert s3backup.fingerprint is not None
    assert cli_main is not None
    assert capture_main is not None


def test_context_manager_closes_store(config, fake_store):
    """Test that BackupOperations releases its store when used as a context manager."""
    with s3backup.BackupOperations(config, store=fake_store) as ops:
        assert ops.store is fake_store

    assert fake_store.closed
