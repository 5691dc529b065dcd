"""Internal constants shared across the library."""

RELAY_URL = "https://api.120399.xyz"
BASE_URL = "https://www.95598.cn"
NAMESPACE = "ONZ3V"

RELAY_ENCRYPT_PATH = "/wsgw/encrypt"
RELAY_DECRYPT_PATH = "/wsgw/decrypt"
RELAY_RECOGNIZE_PATH = "/wsgw/get_x"
RELAY_BODY_KEY = "yuheng"

SESSION_BLOB_KEY = "95598_bizrt"
SESSION_TIME_KEY = "95598_token_time"

API_PATHS: dict[str, str] = {
    "key_code": "/api/oauth2/outer/c02/f02",
    "authorize": "/api/oauth2/oauth/authorize",
    "web_token": "/api/oauth2/outer/getWebToken",
    "search_user": "/api/osg-open-uc0001/member/c9/f02",
    "verify_code": "/api/osg-web0004/open/c44/f05",
    "login": "/api/osg-web0004/open/c44/f06",
    "balance": "/api/osg-open-bc0001/member/c05/f01",
    "usage": "/api/osg-web0004/member/c24/f01",
}

KEY_CODE_EXPIRED_MESSAGE = "WEB渠道KeyCode已失效"
TOKEN_EMPTY_MESSAGE = "Token 为空！"
CAPTCHA_ERROR_MARKER = "验证错误"

# Provider codes that invalidate the session on any call.  Compared against the
# raw provider response before decryption.  10010 may arrive as a number or a
# string; 30010 only as a number and 20103 only as a string.
AUTH_INVALID_CODES: frozenset[int | str] = frozenset({10010, "10010", 30010, "20103"})

# Extended table applied to the decrypted result of the authorize endpoint.
AUTHORIZE_REAUTH_CODES: frozenset[int] = frozenset({10015, 10108, 10009, 10207, 10005, 10010, 30010})

# Codes that are only auth-class together with a specific message.
MESSAGE_QUALIFIED_CODE = 10002

# Fixed request parameters mimicking the official app.
SOURCE = "SGAPP"
TARGET = "SGAPP"
SERVICE_CODE = "0101183"
USER_INFORM_SERVICE_CODE = "0101143"
USC_INFO: dict[str, str] = {
    "member": "0902",
    "devciceIp": "",
    "devciceId": "",
    "tenant": "state_grid",
}
ACCOUNT_CHANNEL_CODE = "0902"
ACCOUNT_FUNC_CODE = "WEBA10071300"
USAGE_QUERY: dict[str, str] = {
    "channelCode": "0902",
    "clearCache": "11",
    "funcCode": "WEBALIPAY_01",
    "promotCode": "1",
    "promotType": "1",
    "serviceCode": "BCP_000026",
    "source": "app",
}
DAILY_USAGE_KIND = "010103"
MONTHLY_USAGE_KIND = "010102"

CAPTCHA_CANVAS_WIDTH = 310
CAPTCHA_CANVAS_HEIGHT = 200

DEFAULT_QUERY_DAYS = 7
MONTHS_PER_YEAR = 12
NO_READING = "-"

MQTT_TOPIC_PREFIX = "nodejs/state-grid/"
