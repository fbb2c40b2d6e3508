import unittest

from gemchat.client.artifacts import split_artifacts
from gemchat.core.models import ArtifactRead


class SplitArtifactsTests(unittest.TestCase):
    """Splitting assistant replies into prose and code blocks."""

    def test_prose_only(self):
        self.assertEqual(split_artifacts("Just text."), ["Just text."])

    def test_code_block_between_prose(self):
        content = "Try this:\n```python\nprint('hi')\n```\nDone."
        before, code, after = split_artifacts(content)
        self.assertEqual(before, "Try this:\n")
        self.assertIsInstance(code, ArtifactRead)
        self.assertEqual(code.type, "code")
        self.assertEqual(code.language, "python")
        self.assertEqual(code.content, "print('hi')")
        self.assertEqual(after, "\nDone.")

    def test_fence_without_language(self):
        [code] = split_artifacts("```\nls -la\n```")
        self.assertIsNone(code.language)
        self.assertEqual(code.content, "ls -la")

    def test_unterminated_fence_stays_prose(self):
        """Should not cut a code block that is still streaming in."""
        content = "Here:\n```js\nconsole.log("
        self.assertEqual(split_artifacts(content), [content])

    def test_empty_content(self):
        self.assertEqual(split_artifacts(""), [])


if __name__ == "__main__":
    unittest.main()
