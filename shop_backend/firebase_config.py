import functools
import logging
from dataclasses import dataclass

import firebase_admin
from django.conf import settings
from firebase_admin import credentials, firestore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FirebaseClients:
    app: firebase_admin.App
    db: object


@functools.lru_cache(maxsize=None)
def initialize_firebase() -> FirebaseClients:
    """
    Initializes the Firebase Admin SDK once per process and returns the client handle.

    Credentials come from the service account file in FIREBASE_CREDENTIALS_PATH
    (or GOOGLE_APPLICATION_CREDENTIALS); without one the application-default
    credentials of the runtime are used.
    """
    cred_path = settings.FIREBASE_CREDENTIALS_PATH
    if cred_path:
        logger.info(f"Loading Firebase service account from: {cred_path}")
        cred = credentials.Certificate(cred_path)
    else:
        logger.info("No Firebase service account configured; using application default credentials.")
        cred = credentials.ApplicationDefault()

    options = {'projectId': settings.FIREBASE_PROJECT_ID} if settings.FIREBASE_PROJECT_ID else None
    app = firebase_admin.initialize_app(cred, options)
    db = firestore.client(app)

    logger.info("Firebase initialized successfully.")
    return FirebaseClients(app=app, db=db)


def get_db():
    return initialize_firebase().db


def get_firebase_app():
    return initialize_firebase().app
