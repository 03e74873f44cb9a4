import os


class Config:
    DEBUG = os.getenv('FLASK_DEBUG', '0') == '1'
    TESTING = False
    LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')

    # Session defaults for a new bill
    DEFAULT_VAT_RATE = os.getenv('DEFAULT_VAT_RATE', '15')
    DEFAULT_SERVICE_CHARGE_RATE = os.getenv('DEFAULT_SERVICE_CHARGE_RATE', '10')
    DEFAULT_TIP_AMOUNT = os.getenv('DEFAULT_TIP_AMOUNT', '0')

    # 'split_equally' or 'no_one'
    UNASSIGNED_ITEM_POLICY = os.getenv('UNASSIGNED_ITEM_POLICY', 'split_equally')
    RECONCILIATION_TOLERANCE = os.getenv('RECONCILIATION_TOLERANCE', '0.05')


class TestingConfig(Config):
    TESTING = True
    LOG_LEVEL = 'DEBUG'
    DEFAULT_VAT_RATE = '15'
    DEFAULT_SERVICE_CHARGE_RATE = '10'
    DEFAULT_TIP_AMOUNT = '0'
    UNASSIGNED_ITEM_POLICY = 'split_equally'
    RECONCILIATION_TOLERANCE = '0.05'
