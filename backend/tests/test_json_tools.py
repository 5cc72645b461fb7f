import unittest

from docflow.services.ai.common.json_tools import (
    contains_placeholder_values,
    contains_placeholders,
    extract_json,
    extract_json_object,
    normalize_json,
)


class ExtractJsonTests(unittest.TestCase):
    def test_valid_json_object(self):
        result = extract_json('{"status": "success", "confidence": 0.9}')
        self.assertEqual(result, {"status": "success", "confidence": 0.9})

    def test_valid_json_with_prefix(self):
        result = extract_json('Here is the result: {"status": "failed", "issues": []}')
        self.assertIsInstance(result, dict)
        self.assertEqual(result["status"], "failed")

    def test_valid_json_array(self):
        self.assertEqual(extract_json("[1, 2, 3]"), [1, 2, 3])

    def test_empty_string_returns_none(self):
        self.assertIsNone(extract_json(""))
        self.assertIsNone(extract_json("   "))

    def test_no_json_returns_none(self):
        self.assertIsNone(extract_json("This is plain text with no JSON"))

    def test_nested_braces_inside_strings(self):
        result = extract_json('noise {"reason": "brace } inside", "n": {"a": 1}} trailing')
        self.assertEqual(result, {"reason": "brace } inside", "n": {"a": 1}})

    def test_extract_json_object_rejects_arrays(self):
        self.assertIsNone(extract_json_object("[1, 2]"))
        self.assertEqual(extract_json_object('```json\n{"a": 1}\n```'), {"a": 1})


class NormalizeJsonTests(unittest.TestCase):
    def test_strips_markdown_fence(self):
        self.assertEqual(normalize_json('```json\n{"status": "success"}\n```'), '{"status": "success"}')

    def test_strips_unlabelled_fence(self):
        self.assertEqual(normalize_json('```\n{"a": 1}\n```'), '{"a": 1}')

    def test_unclosed_fence_keeps_body(self):
        self.assertEqual(normalize_json('```json\n{"status": "succ'), '{"status": "succ')

    def test_slices_object_out_of_prose(self):
        self.assertEqual(normalize_json('Result:\n{"a": 1}\nDone.'), '{"a": 1}')

    def test_empty_input(self):
        self.assertEqual(normalize_json(""), "")


class PlaceholderTests(unittest.TestCase):
    def test_detects_three_dots(self):
        self.assertTrue(contains_placeholders('{"totalAmount": "1234.56..."}'))

    def test_detects_unicode_ellipsis(self):
        self.assertTrue(contains_placeholders('{"lines": ["…"]}'))

    def test_clean_text(self):
        self.assertFalse(contains_placeholders('{"totalAmount": "1234.56"}'))
        self.assertFalse(contains_placeholders(None))

    def test_decoded_values_are_walked(self):
        self.assertTrue(contains_placeholder_values({"lines": [{"total": "12…"}]}))
        self.assertTrue(contains_placeholder_values({"...": 1}))
        self.assertFalse(contains_placeholder_values({"total": 12.5, "lines": ["a", None]}))
        self.assertFalse(contains_placeholder_values(None))
