"""
字段定义与类型转换测试
"""

import os
import sys
import unittest
from datetime import date, datetime

# 添加项目根目录到路径
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from relmodel import (
    BoolField,
    ConfigurationError,
    Context,
    DerivableField,
    Field,
    FloatField,
    IntField,
    StringField,
)
from relmodel.core.types import convert_value, get_kind_by_name, get_kind_name


class TestConvertValue(unittest.TestCase):
    """宽松/严格类型转换"""

    def test_lenient(self) -> None:
        self.assertEqual(25, convert_value('25', int))
        self.assertEqual(25, convert_value(25.9, int))
        self.assertEqual(3.5, convert_value('3.5', float))
        self.assertEqual('123', convert_value(123, str))
        self.assertEqual('abc', convert_value(b'abc', str))
        self.assertTrue(convert_value('yes', bool))
        self.assertFalse(convert_value('0', bool))
        self.assertEqual(date(2020, 1, 2), convert_value('2020-01-02', date))
        self.assertEqual(date(2020, 1, 2), convert_value(datetime(2020, 1, 2, 3), date))
        self.assertEqual(datetime(2020, 1, 2, 3), convert_value('2020-01-02T03:00:00', datetime))

    def test_none_passes_through(self) -> None:
        self.assertIsNone(convert_value(None, int, strict=True))

    def test_bool_is_not_int(self) -> None:
        with self.assertRaises(ValueError):
            convert_value(True, int)
        with self.assertRaises(ValueError):
            convert_value(False, float)

    def test_invalid(self) -> None:
        with self.assertRaises(ValueError):
            convert_value('abc', int)
        with self.assertRaises(ValueError):
            convert_value('maybe', bool)

    def test_strict(self) -> None:
        self.assertEqual(1, convert_value(1, int, strict=True))
        with self.assertRaises(TypeError):
            convert_value('1', int, strict=True)

    def test_unknown_kind(self) -> None:
        with self.assertRaises(TypeError):
            convert_value('x', list)

    def test_kind_names(self) -> None:
        self.assertEqual('int', get_kind_name(int))
        self.assertEqual('list', get_kind_name(list))
        self.assertIs(date, get_kind_by_name('date'))
        self.assertIs(str, get_kind_by_name('unknown'))


class TestField(unittest.TestCase):
    """普通字段"""

    def test_defaults(self) -> None:
        f = Field('name')
        self.assertEqual('name', f.caption)
        self.assertIs(str, f.kind)
        self.assertFalse(f.required)
        self.assertFalse(f.derivable)
        self.assertEqual([], f.depends_on)

    def test_typed_fields(self) -> None:
        self.assertIs(int, IntField('a').kind)
        self.assertIs(float, FloatField('a').kind)
        self.assertIs(bool, BoolField('a').kind)
        self.assertIs(str, StringField('a').kind)

    def test_clean_func_runs_after_conversion(self) -> None:
        f = IntField('qty', clean_func=lambda v: v * 2)
        self.assertEqual(10, f.clean('5'))

    def test_check_func(self) -> None:
        def positive(value: int) -> None:
            if value <= 0:
                raise ValueError("must be positive")

        f = IntField('qty', check_func=positive)
        f.check(1)
        with self.assertRaises(ValueError):
            f.check(0)

    def test_string_trim_and_length(self) -> None:
        f = StringField('text', trim=True, max_length=3)
        self.assertEqual('abc', f.clean('  abc '))
        f.check('abc')
        with self.assertRaises(ValueError):
            f.check('abcd')

    def test_calc_not_supported(self) -> None:
        with self.assertRaises(ConfigurationError):
            IntField('a').calc({})

    def test_clone_for_fk(self) -> None:
        original = IntField('id', 'ID', check_func=lambda v: None)
        clone = original.clone_for_fk('fk_user_id', 'FK field', True)

        self.assertEqual('fk_user_id', clone.name)
        self.assertEqual('FK field', clone.caption)
        self.assertTrue(clone.required)
        self.assertIs(original.check_func, clone.check_func)
        self.assertEqual('id', original.name)
        self.assertFalse(original.required)

    def test_to_dict(self) -> None:
        self.assertEqual({
            'name': 'id',
            'caption': 'ID',
            'kind': 'int',
            'required': True,
            'derivable': False,
            'depends_on': [],
        }, IntField('id', 'ID', required=True).to_dict())

    def test_repr(self) -> None:
        self.assertEqual("IntField(name='id', kind=int)", repr(IntField('id')))


class TestDerivableField(unittest.TestCase):
    """可推导字段"""

    def test_calc(self) -> None:
        f = DerivableField('full', depends_on=['a', 'b'], get=lambda row: row['a'] + row['b'])
        self.assertTrue(f.derivable)
        self.assertEqual(['a', 'b'], f.depends_on)
        self.assertEqual('xy', f.calc({'a': 'x', 'b': 'y'}))

    def test_calc_with_context(self) -> None:
        ctx = Context()
        ctx.set_derivable_data('names', {1: 'one'})
        f = DerivableField('label', depends_on=['id'],
                           get_ctx=lambda c, row: c.get_derivable_data('names')[row['id']])
        self.assertEqual('one', f.calc({'id': 1}, ctx))

    def test_requires_exactly_one_function(self) -> None:
        with self.assertRaises(ConfigurationError):
            DerivableField('x')
        with self.assertRaises(ConfigurationError):
            DerivableField('x', get=lambda row: 1, get_ctx=lambda ctx, row: 1)

    def test_cannot_be_fk(self) -> None:
        f = DerivableField('x', get=lambda row: 1)
        with self.assertRaises(ConfigurationError):
            f.clone_for_fk('fk', 'FK field', False)

    def test_depends_on_is_copy(self) -> None:
        f = DerivableField('x', depends_on=['a'], get=lambda row: 1)
        f.depends_on.append('b')
        self.assertEqual(['a'], f.depends_on)


if __name__ == '__main__':
    unittest.main()
