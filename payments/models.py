from django.db import models


class TransactionStatus(models.TextChoices):
    INITIATED = 'initiated', 'Initiated'
    PENDING = 'pending', 'Pending'
    COMPLETED = 'completed', 'Completed'
    FAILED = 'failed', 'Failed'
    CANCELLED = 'cancelled', 'Cancelled'


class MpesaEnvironment(models.TextChoices):
    SANDBOX = 'sandbox', 'Sandbox'
    PRODUCTION = 'production', 'Production'


# Daraja reports success as result code 0.
SUCCESS_RESULT_CODE = '0'

PRODUCTION_MINIMUM_AMOUNT = 10
