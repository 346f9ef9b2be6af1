"""
加密服务
用于加密和解密敏感信息（数据库密码、SQLite文件内容、API Key）

Fernet 令牌自带随机 IV 和 HMAC 校验，篡改或密钥错误时解密失败
"""
import os
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken

from ..utils.logger import get_logger

logger = get_logger(__name__)


class EncryptionService:
    """加密服务类"""

    def __init__(self, key: Optional[bytes] = None):
        """
        初始化加密服务

        Args:
            key: 加密密钥（32字节URL安全的base64编码字符串）
                 如果为None，则从环境变量ENCRYPTION_KEY读取
                 如果环境变量也不存在，则生成新密钥
        """
        if key is None:
            key_str = os.getenv("ENCRYPTION_KEY")
            if key_str:
                key = key_str.encode()
            else:
                key = Fernet.generate_key()
                logger.warning(
                    "未找到ENCRYPTION_KEY环境变量，已生成临时密钥，重启后已加密的数据将无法解密"
                )

        self.cipher = Fernet(key)

    def encrypt(self, plaintext: Optional[str]) -> str:
        """
        加密字符串

        Args:
            plaintext: 明文字符串

        Returns:
            加密后的字符串（base64编码），空输入返回空字符串
        """
        if not plaintext:
            return ""

        return self.cipher.encrypt(plaintext.encode()).decode()

    def decrypt(self, ciphertext: Optional[str]) -> str:
        """
        解密字符串

        Args:
            ciphertext: 密文字符串（base64编码）

        Returns:
            解密后的明文字符串

        Raises:
            cryptography.fernet.InvalidToken: 如果密文无效或密钥错误
        """
        if not ciphertext:
            return ""

        return self.cipher.decrypt(ciphertext.encode()).decode()

    def try_decrypt(self, ciphertext: Optional[str]) -> Optional[str]:
        """解密失败时返回None并记录日志"""
        try:
            return self.decrypt(ciphertext)
        except InvalidToken:
            logger.error("解密失败：密文无效或ENCRYPTION_KEY已变更")
            return None

    @staticmethod
    def generate_key() -> str:
        """
        生成新的加密密钥

        Returns:
            新生成的密钥（base64编码字符串）
        """
        return Fernet.generate_key().decode()


# 全局加密服务实例
_encryption_service = None


def get_encryption_service() -> EncryptionService:
    """获取全局加密服务实例"""
    global _encryption_service
    if _encryption_service is None:
        _encryption_service = EncryptionService()
    return _encryption_service
