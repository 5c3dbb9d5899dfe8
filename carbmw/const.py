"""Constants for the BMW ConnectedDrive client."""

from __future__ import annotations

from typing import Dict

DOMAIN = "carbmw"
DEBUG_LOG = False

REGION_REST_OF_WORLD = "rest_of_world"
REGION_NORTH_AMERICA = "north_america"
REGIONS = (REGION_REST_OF_WORLD, REGION_NORTH_AMERICA)

UNIT_METRIC = "metric"
UNIT_IMPERIAL = "imperial"
UNITS = (UNIT_METRIC, UNIT_IMPERIAL)

# Hosts serving the eadrax API (vehicle data, remote commands, OAuth discovery)
API_HOSTS: Dict[str, str] = {
    REGION_REST_OF_WORLD: "cocoapi.bmwgroup.com",
    REGION_NORTH_AMERICA: "cocoapi.bmwgroup.us",
}
OCP_APIM_KEYS: Dict[str, str] = {
    REGION_REST_OF_WORLD: "4f1c85a3-758f-a37d-bbb6-f8704494acfa",
    REGION_NORTH_AMERICA: "31e102f5-6f7e-7ef3-9044-ddce63891362",
}
USER_AGENT_REGIONS: Dict[str, str] = {
    REGION_REST_OF_WORLD: "row",
    REGION_NORTH_AMERICA: "na",
}
UNIT_PREFERENCES: Dict[str, str] = {
    UNIT_METRIC: "d=KM;v=L;p=B;ec=KWH100KM;fc=L100KM;em=GKM;",
    UNIT_IMPERIAL: "d=MI;v=G;p=P;ec=MPKWH;fc=MPG;em=GMI;",
}

OAUTH_CONFIG_PATH = "/eadrax-ucs/v1/presentation/oauth/config"
USER_AGENT = "Dart/3.3 (dart:io)"
X_USER_AGENT = "android(AP2A.240605.024);bmw;4.9.2(36892);{region}"
IDENTITY_PROVIDER = "gcdm"
LOGIN_NONCE = "login_nonce"
SSO_COOKIE = "GCDMSSO"

# Session states; values are persisted
STATE_LOGGED_OUT = 0
STATE_LOGGED_IN = 1
STATE_AUTHENTICATING = 2

DEFAULT_REFRESH_MARGIN = 15 * 60  # Refresh this many seconds before the token really expires
DEFAULT_REFRESH_RETRY_INTERVAL = 60  # Keep using a stale token this long after a failed refresh
DEFAULT_THROTTLE_ATTEMPTS = 3
DEFAULT_THROTTLE_COOLDOWN = 15  # Seconds to wait after the identity provider throttled us
DEFAULT_CAPTCHA_TTL = 10 * 60
DEFAULT_REQUEST_TIMEOUT = 30
MAX_AUTH_ROUNDS = 2
THROTTLE_STATUSES = frozenset({403, 429})

OPTION_REFRESH_MARGIN = "refresh_margin"
OPTION_REFRESH_RETRY_INTERVAL = "refresh_retry_interval"
OPTION_THROTTLE_ATTEMPTS = "throttle_attempts"
OPTION_THROTTLE_COOLDOWN = "throttle_cooldown"
OPTION_CAPTCHA_TTL = "captcha_ttl"
OPTION_REQUEST_TIMEOUT = "request_timeout"
OPTION_DEBUG_LOG = "debug_log"

#OAuth discovery returns data like this:
#{'clientName': 'mybmwapp', 'clientSecret': '...', 'clientId': '31c357a0-7a1d-4590-aa99-33b97244d048', 'gcdmBaseUrl': 'https://customer.bmwgroup.com', 'returnUrl': 'com.bmw.connected://oauth', 'brand': 'bmw', 'language': 'en', 'country': 'GB', 'authorizationEndpoint': 'https://customer.bmwgroup.com/oneid/login', 'tokenEndpoint': 'https://customer.bmwgroup.com/gcdm/oauth/token', 'scopes': ['openid', 'profile', 'email', 'offline_access', 'smacc', 'vehicle_data', 'perseus', 'dlm', 'svds', 'cesim', 'vsapi', 'remote_services', 'fupo', 'authenticate_user'], 'promptValues': ['login']}

#remote commands return data like this:
#{'eventId': 'e4b1f0b6-7f5e-4f0b-8c2d-3d6f5e4c2b1a@bmw.de', 'creationTime': '2024-03-02T10:15:06.000Z'}
