"""
# @Time    : 2025/11/15 6:03
# @Author  : Pedro
# @File    : code_generator.py
# @Software: PyCharm
"""
import re
from secrets import choice
from typing import Callable

from app.pedro.exception import CodeGenerationExhausted, InvalidVoucherDefinition

# 去掉易混淆字符 0/O 1/I
ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
_CODE_RE = re.compile(r"^[A-Z0-9]+$")


class CodeGenerator:

    def __init__(self, alphabet: str = ALPHABET):
        self.alphabet = alphabet

    @staticmethod
    def normalize(code: str) -> str:
        return (code or "").strip().upper()

    @classmethod
    def validate(cls, code: str) -> str:
        """运营自定义券码：大写字母数字"""
        code = cls.normalize(code)
        if not code or not _CODE_RE.match(code):
            raise InvalidVoucherDefinition("Voucher code must be uppercase letters and digits")
        return code

    def generate(self, length: int = 8, prefix: str = "") -> str:
        if length < 1:
            raise ValueError("length must be positive")
        prefix = self.validate(prefix) if prefix else ""
        return prefix + "".join(choice(self.alphabet) for _ in range(length))

    def generate_unique(
            self,
            is_taken: Callable[[str], bool],
            length: int = 8,
            prefix: str = "",
            max_attempts: int = 5,
    ) -> str:
        """
        生成未被占用的券码；短码存在碰撞概率，最多尝试 max_attempts 次
        """
        for _ in range(max_attempts):
            code = self.generate(length, prefix)
            if not is_taken(code):
                return code
        raise CodeGenerationExhausted()
