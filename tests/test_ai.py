import json
import unittest

from openai import OpenAIError

import ai
from tests.support import FakeAIMixin

IMAGE = "data:image/png;base64,iVBORw0KGgo="


class ExtractJsonTests(unittest.TestCase):
    def test_plain_object(self) -> None:
        self.assertEqual(ai.extract_json('{"a": 1}'), {"a": 1})

    def test_fenced_block_with_prose(self) -> None:
        content = 'Here you go:\n```json\n{"formTitle": "Anmeldung"}\n```\nThanks'
        self.assertEqual(ai.extract_json(content), {"formTitle": "Anmeldung"})

    def test_object_surrounded_by_text(self) -> None:
        self.assertEqual(ai.extract_json('Result: {"x": [1, 2]} done'), {"x": [1, 2]})

    def test_no_json_raises(self) -> None:
        with self.assertRaises(ai.AIResponseError) as ctx:
            ai.extract_json("no braces here", missing_message="Failed to parse form structure")
        self.assertEqual(str(ctx.exception), "Failed to parse form structure")

    def test_invalid_json_raises(self) -> None:
        with self.assertRaises(ai.AIResponseError) as ctx:
            ai.extract_json("{not: valid}")
        self.assertEqual(str(ctx.exception), "Invalid response format")


class NormalizeFieldTests(unittest.TestCase):
    def test_defaults_for_empty_field(self) -> None:
        field = ai.normalize_field({}, 2)
        self.assertEqual(field["id"], "field_3")
        self.assertEqual(field["germanQuestion"], "Feld 3")
        self.assertEqual(field["arabicQuestion"], "الحقل 3")
        self.assertEqual(field["fieldType"], "text")
        self.assertTrue(field["required"])
        self.assertFalse(field["prefilled"])
        self.assertIsNone(field["existingValue"])
        self.assertEqual(field["confidence"], "medium")
        self.assertEqual(field["position"], {"x": 5.0, "y": 29.0, "width": 40.0, "height": 4.0})

    def test_accepts_both_label_styles(self) -> None:
        model_style = ai.normalize_field({"germanLabel": "Name", "arabicLabel": "الاسم"}, 0)
        client_style = ai.normalize_field({"germanQuestion": "Name", "arabicQuestion": "الاسم"}, 0)
        self.assertEqual(model_style["germanQuestion"], client_style["germanQuestion"])
        self.assertEqual(model_style["arabicQuestion"], client_style["arabicQuestion"])

    def test_required_only_false_when_explicit(self) -> None:
        self.assertTrue(ai.normalize_field({"required": None}, 0)["required"])
        self.assertFalse(ai.normalize_field({"required": False}, 0)["required"])

    def test_zero_counts_as_missing(self) -> None:
        field = ai.normalize_field({"inputPosition": {"x": 0, "y": 0, "width": 0, "height": 0}}, 0)
        self.assertEqual(field["position"], {"x": 5.0, "y": 15.0, "width": 40.0, "height": 4.0})

    def test_position_is_clamped(self) -> None:
        field = ai.normalize_field({"position": {"x": 120, "y": -5, "width": 80, "height": 60}}, 0)
        pos = field["position"]
        self.assertEqual(pos["x"], 95.0)
        self.assertEqual(pos["y"], 0.0)
        # width: max(5, min(95 - 95, 80)) = 5, then capped at 98 - x = 3
        self.assertEqual(pos["width"], 3.0)
        self.assertEqual(pos["height"], 25.0)

    def test_non_numeric_position_uses_defaults(self) -> None:
        field = ai.normalize_field({"inputPosition": {"x": "left", "y": None, "width": "wide"}}, 1)
        self.assertEqual(field["position"], {"x": 5.0, "y": 22.0, "width": 40.0, "height": 4.0})


class AnalyzeFormTests(FakeAIMixin, unittest.TestCase):
    def test_returns_normalized_fields(self) -> None:
        fake = self.install_fake_ai([
            "```json\n" + json.dumps({
                "formTitle": "Anmeldung bei der Meldebehörde",
                "formType": "Anmeldung",
                "detectedFields": [
                    {"id": "name", "germanLabel": "Familienname", "arabicLabel": "اسم العائلة",
                     "inputPosition": {"x": 25, "y": 18, "width": 40, "height": 4}, "confidence": "high"},
                    {"germanLabel": "Vorname", "prefilled": True, "existingValue": "Amal"},
                ],
            }) + "\n```"
        ])

        result = ai.analyze_form(IMAGE)

        self.assertEqual(result["formTitle"], "Anmeldung bei der Meldebehörde")
        self.assertEqual(len(result["fields"]), 2)
        self.assertEqual(result["fields"][0]["id"], "name")
        self.assertEqual(result["fields"][0]["position"]["x"], 25.0)
        self.assertTrue(result["fields"][1]["prefilled"])
        self.assertEqual(result["fields"][1]["existingValue"], "Amal")

        call = fake.calls[0]
        self.assertEqual(call["max_tokens"], 4000)
        self.assertEqual(call["temperature"], 0.02)
        image_part = call["messages"][1]["content"][1]
        self.assertEqual(image_part["image_url"], {"url": IMAGE, "detail": "high"})
        prompt = call["messages"][1]["content"][0]["text"]
        self.assertIn("COMMON ERRORS TO AVOID", prompt)
        self.assertIn("Missing fields that are already filled in", prompt)

    def test_defaults_for_title_and_type(self) -> None:
        self.install_fake_ai([{"fields": [{"germanQuestion": "Ort"}]}])
        result = ai.analyze_form(IMAGE)
        self.assertEqual(result["formTitle"], "Deutsches Formular")
        self.assertEqual(result["formType"], "Formular")

    def test_no_fields_detected(self) -> None:
        self.install_fake_ai([{"formTitle": "Leer", "detectedFields": []}])
        with self.assertRaises(ai.AIResponseError) as ctx:
            ai.analyze_form(IMAGE)
        self.assertEqual(str(ctx.exception), "No fields detected in form")

    def test_unparseable_reply(self) -> None:
        self.install_fake_ai(["I cannot read this form."])
        with self.assertRaises(ai.AIResponseError) as ctx:
            ai.analyze_form(IMAGE)
        self.assertEqual(str(ctx.exception), "Failed to parse form structure")

    def test_openai_error_is_wrapped(self) -> None:
        self.install_fake_ai([OpenAIError("rate limited")])
        with self.assertRaises(ai.AIResponseError) as ctx:
            ai.analyze_form(IMAGE)
        self.assertEqual(str(ctx.exception), "Analysis failed")


class TranslateTests(FakeAIMixin, unittest.TestCase):
    def test_prompt_lines_and_result(self) -> None:
        fake = self.install_fake_ai([
            {"translations": [{"fieldId": "field_1", "germanAnswer": "Damaskus"}]}
        ])
        answers = [{"fieldId": "field_1", "germanQuestion": "Geburtsort", "arabicAnswer": "دمشق"}]

        result = ai.translate_answers(answers)

        self.assertEqual(result, [{"fieldId": "field_1", "germanAnswer": "Damaskus"}])
        prompt = fake.calls[0]["messages"][1]["content"]
        self.assertIn('FieldId: "field_1" | Question: "Geburtsort" | Arabic Answer: "دمشق"', prompt)
        self.assertEqual(fake.calls[0]["temperature"], 0.1)

    def test_missing_translations_array(self) -> None:
        self.install_fake_ai([{"result": "ok"}])
        with self.assertRaises(ai.AIResponseError) as ctx:
            ai.translate_answers([{"fieldId": "f", "arabicAnswer": "x"}])
        self.assertEqual(str(ctx.exception), "Invalid translation format")


class ExplainAndCVTests(FakeAIMixin, unittest.TestCase):
    def test_explain_returns_text(self) -> None:
        self.install_fake_ai(["الموضوع باختصار: رسالة من الجوب سنتر"])
        self.assertIn("الجوب سنتر", ai.explain_document(IMAGE))

    def test_explain_empty_reply_falls_back(self) -> None:
        self.install_fake_ai([""])
        self.assertEqual(ai.explain_document(IMAGE), ai.EXPLAIN_FALLBACK)

    def test_generate_cv_requests_json_object(self) -> None:
        fake = self.install_fake_ai([{"personalInfo": {"firstName": "Mohammed"}, "skills": ["Excel"]}])
        cv = ai.generate_cv({"personalInfo": {"firstName": "محمد"}, "ignored": True})
        self.assertEqual(cv["personalInfo"]["firstName"], "Mohammed")
        call = fake.calls[0]
        self.assertEqual(call["response_format"], {"type": "json_object"})
        self.assertNotIn("ignored", call["messages"][1]["content"])

    def test_generate_cv_invalid_json(self) -> None:
        self.install_fake_ai(["not json"])
        with self.assertRaises(ai.AIResponseError) as ctx:
            ai.generate_cv({"personalInfo": {}})
        self.assertEqual(str(ctx.exception), "Failed to generate valid JSON")


if __name__ == "__main__":
    unittest.main()
