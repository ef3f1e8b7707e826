"""
# @Time    : 2025/10/30 7:17
# @Author  : Pedro
# @File    : firebase_admin_service.py
# @Software: PyCharm
"""
import firebase_admin
from firebase_admin import credentials, firestore
from loguru import logger

from app.config.settings_manager import get_current_settings


# ✅ Firebase Admin 初始化（仅执行一次）
def init_firebase_admin():
    settings = get_current_settings()

    if not firebase_admin._apps:  # 防止重复初始化
        firebase = settings.google.firebase
        cred = credentials.Certificate(firebase.service_account_path) \
            if firebase.service_account_path else credentials.ApplicationDefault()

        options = {}
        if firebase.project_id:
            options["projectId"] = firebase.project_id
        if firebase.database_url:
            options["databaseURL"] = firebase.database_url

        firebase_admin.initialize_app(cred, options)
        logger.info("✅ Firebase Admin SDK 已初始化")

    return firebase_admin.get_app()


def firestore_client():
    """返回 Firestore client（必要时先初始化 Firebase Admin）"""
    init_firebase_admin()
    return firestore.client()
