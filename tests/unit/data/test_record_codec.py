from __future__ import annotations

import unittest

import numpy as np

from wnd_worker.contracts.column_schema import parse_column_schema
from wnd_worker.data.record_codec import (
    FatalConfigMismatch,
    Record,
    RecordCodec,
    SparseInput,
    fingerprint_values,
    string_hash,
)


def _example_schema(**overrides: dict) -> object:
    columns = [
        {"column_num": 0, "column_name": "A", "column_type": "N"},
        {"column_num": 1, "column_name": "B", "column_type": "N"},
        {"column_num": 2, "column_name": "C", "column_type": "C", "bin_category": ["x", "y"]},
        {"column_num": 3, "column_name": "label", "column_type": "N", "flag": "target"},
    ]
    for position, extra in overrides.items():
        columns[int(position.lstrip("c"))].update(extra)
    return parse_column_schema(columns)


class StringHashTests(unittest.TestCase):
    def test_string_hash_matches_multiplicative_rule(self) -> None:
        self.assertEqual(string_hash(""), 0)
        self.assertEqual(string_hash("x"), 120)
        self.assertEqual(string_hash("ab"), 97 * 31 + 98)

    def test_fingerprint_is_order_dependent(self) -> None:
        self.assertNotEqual(fingerprint_values(["a", "b"]), fingerprint_values(["b", "a"]))

    def test_fingerprint_stays_within_64_bits(self) -> None:
        fingerprint = fingerprint_values(["some fairly long column value " * 20] * 30)
        self.assertGreaterEqual(fingerprint, 0)
        self.assertLess(fingerprint, 1 << 64)


class RecordCodecTests(unittest.TestCase):
    def test_worked_example_decodes_record(self) -> None:
        codec = RecordCodec(_example_schema(), ",")
        decoded = codec.decode("1.5,2.0,x,1", ordinal=1)
        record = decoded.record
        np.testing.assert_allclose(record.dense, np.array([1.5, 2.0], dtype=np.float32))
        self.assertEqual(record.categorical, (SparseInput(column_num=2, index=0),))
        self.assertEqual(record.label, 1.0)
        self.assertEqual(record.weight, 1.0)
        self.assertEqual(decoded.fingerprint, fingerprint_values(["1.5", "2.0", "x"]))

    def test_same_line_gives_same_fingerprint_across_codecs(self) -> None:
        first = RecordCodec(_example_schema(), ",").decode("3.25,-1,y,0")
        second = RecordCodec(_example_schema(), ",").decode("3.25,-1,y,0")
        self.assertEqual(first.fingerprint, second.fingerprint)

    def test_unknown_and_empty_categories_map_to_missing_index(self) -> None:
        codec = RecordCodec(_example_schema(), ",")
        self.assertEqual(codec.decode("1,2,zzz,0").record.categorical[0].index, 2)
        self.assertEqual(codec.decode("1,2,,0").record.categorical[0].index, 2)
        self.assertEqual(codec.decode("1,2,y,0").record.categorical[0].index, 1)

    def test_grouped_categories_share_an_index(self) -> None:
        schema = _example_schema(c2={"bin_category": ["p@^q", "r"]})
        codec = RecordCodec(schema, ",")
        self.assertEqual(codec.decode("1,2,p,0").record.categorical[0].index, 0)
        self.assertEqual(codec.decode("1,2,q,0").record.categorical[0].index, 0)
        self.assertEqual(codec.decode("1,2,r,0").record.categorical[0].index, 1)

    def test_blank_and_unparsable_numbers_default_to_zero(self) -> None:
        codec = RecordCodec(_example_schema(), ",")
        with self.assertLogs("wnd_worker.data.record_codec", level="WARNING"):
            record = codec.decode(",nan,x,abc", ordinal=9).record
        np.testing.assert_array_equal(record.dense, np.zeros(2, dtype=np.float32))
        self.assertEqual(record.label, 0.0)
        self.assertEqual(codec.diagnostics.defaulted_fields, 2)

    def test_weight_field_parsing(self) -> None:
        codec = RecordCodec(_example_schema(), ",")
        self.assertEqual(codec.decode("1,2,x,1,2.5").record.weight, 2.5)
        self.assertEqual(codec.decode("1,2,x,1,").record.weight, 1.0)
        with self.assertLogs("wnd_worker.data.record_codec", level="WARNING"):
            self.assertEqual(codec.decode("1,2,x,1,bad").record.weight, 1.0)
        with self.assertLogs("wnd_worker.data.record_codec", level="WARNING"):
            self.assertEqual(codec.decode("1,2,x,1,-3").record.weight, 1.0)
        self.assertEqual(codec.diagnostics.invalid_weights, 1)
        self.assertEqual(codec.diagnostics.negative_weights, 1)

    def test_weights_are_never_negative(self) -> None:
        codec = RecordCodec(_example_schema(), ",")
        for raw in ["", "0", "1", "-0.5", "-1e9", "nan", "inf", "-inf", "x", "3.5", " 2 "]:
            with self.subTest(raw=raw):
                weight = codec.decode(f"1,2,x,1,{raw}").record.weight
                self.assertGreaterEqual(weight, 0.0)
                if raw in {"", "nan", "inf", "-inf", "x"} or raw.startswith("-"):
                    self.assertEqual(weight, 1.0)

    def test_delimiter_mismatch_is_fatal(self) -> None:
        codec = RecordCodec(_example_schema(), ",")
        with self.assertRaises(FatalConfigMismatch) as ctx:
            codec.decode("1.5|2.0|x|1", ordinal=3)
        self.assertIn("delimiter=','", str(ctx.exception))

    def test_meta_columns_excluded_from_features_and_fingerprint(self) -> None:
        schema = parse_column_schema(
            [
                {"column_num": 0, "column_name": "id", "column_type": "C", "flag": "meta"},
                {"column_num": 1, "column_name": "A", "column_type": "N"},
                {"column_num": 2, "column_name": "label", "column_type": "N", "flag": "target"},
            ]
        )
        codec = RecordCodec(schema, "|")
        first = codec.decode("row1|4.0|1")
        second = codec.decode("row2|4.0|0")
        self.assertEqual(first.fingerprint, second.fingerprint)
        self.assertEqual(first.record.dense.shape, (1,))

    def test_post_var_select_keeps_final_selected_only(self) -> None:
        schema = _example_schema(c0={"final_select": True}, c2={"final_select": True})
        codec = RecordCodec(schema, ",")
        decoded = codec.decode("1.5,2.0,y,0")
        np.testing.assert_allclose(decoded.record.dense, np.array([1.5], dtype=np.float32))
        self.assertEqual(decoded.fingerprint, fingerprint_values(["1.5", "y"]))
        self.assertEqual(codec.input_index_map, {0: 0, 2: 0})

    def test_without_var_select_uses_good_candidates(self) -> None:
        schema = _example_schema(c1={"good_candidate": False})
        codec = RecordCodec(schema, ",")
        self.assertEqual(codec.decode("1.5,2.0,y,0").record.dense.shape, (1,))


class RecordTests(unittest.TestCase):
    def test_record_owns_a_read_only_copy(self) -> None:
        source = np.array([1.0, 2.0], dtype=np.float32)
        record = Record(dense=source, categorical=[SparseInput(1, 0)], label=0.0)
        source[0] = 99.0
        self.assertEqual(float(record.dense[0]), 1.0)
        with self.assertRaises(ValueError):
            record.dense[0] = 5.0
        self.assertIsInstance(record.categorical, tuple)

    def test_negative_weight_rejected(self) -> None:
        with self.assertRaises(ValueError):
            Record(dense=np.zeros(1), categorical=(), label=0.0, weight=-1.0)


if __name__ == "__main__":
    unittest.main()
