"""
Smoke tests to verify basic package integrity.
Ensures that all modules can be imported without errors.
"""
import unittest


class TestSmoke(unittest.TestCase):
    def test_import_commands(self):
        """Test that quaydesk.commands can be imported successfully."""
        try:
            import quaydesk.commands
        except ImportError as e:
            self.fail(f"Failed to import quaydesk.commands: {e}")

    def test_import_backend(self):
        """Test that quaydesk.backend can be imported successfully."""
        try:
            import quaydesk.backend
        except ImportError as e:
            self.fail(f"Failed to import quaydesk.backend: {e}")

    def test_version(self):
        import quaydesk
        self.assertEqual(quaydesk.__version__, "0.1.0")


if __name__ == '__main__':
    unittest.main()
