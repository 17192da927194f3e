"""
utils/constants.py

Purpose: Centralized static content

- All user-facing messages (short, lowercase, conversational)
- Store key prefixes and sort keys
- Reusable constants

(Prevents hardcoding across the codebase)
"""

# ============================================================
# STORE KEYS
# ============================================================

USER_PK = "USER#{phone}"
AUTHTOKEN_PK = "AUTHTOKEN#{token}"
CONVERSATION_PK = "CONV#{chat_id}"
PROFILE_PK = "PROFILE#{handle}"
CHATCOUNT_PK = "CHATCOUNT#{chat_id}"

SK_PROFILE = "PROFILE"
SK_CREDENTIALS = "CREDENTIALS"
SK_SIGNED_OUT = "SIGNED_OUT"
SK_JUST_ONBOARDED = "JUST_ONBOARDED"
SK_AUTH_SESSION = "AUTH_SESSION"
SK_AUTHTOKEN = "AUTHTOKEN"
SK_MESSAGES = "MESSAGES"
SK_CHATCOUNT = "CHATCOUNT"

CHATCOUNT_TTL_SECONDS = 7 * 24 * 60 * 60
MAGIC_LINK_TTL_BUFFER_SECONDS = 60

# ============================================================
# ONBOARDING / CONNECTED
# ============================================================

CONNECTED_MESSAGE = "you're all set! your resy account is connected"
CAPABILITIES_MESSAGE = (
    "i can search restaurants, find open tables, make reservations, "
    "and manage your bookings. just text me what you need"
)

# Pause between the two parts of a multi-part system reply
MESSAGE_PART_DELAY_SECONDS = 0.6
WELCOME_PART_DELAY_SECONDS = 0.8

# ============================================================
# OTP FLOW
# ============================================================

OTP_SENT_MESSAGE = "hey! i just sent a verification code to this number from resy"
OTP_SENT_FOLLOWUP = "send me the 6-digit code to connect your account"

OTP_RATE_LIMITED_MESSAGE = (
    "resy is temporarily blocking verification texts to your number (too many recent attempts)"
)
OTP_RATE_LIMITED_FALLBACK = (
    "you can connect by pasting your resy auth token directly: go to resy.com, open browser "
    "dev tools, and copy the x-resy-auth-token header value, then text it to me"
)

OTP_SEND_FAILED_MESSAGE = (
    "i couldn't send a verification code to this number. make sure you have a resy account "
    "linked to this phone number"
)
OTP_SEND_FAILED_FALLBACK = (
    "alternatively, you can paste your resy auth token directly: go to resy.com, log in, "
    "open dev tools, and copy the x-resy-auth-token header from any api request"
)

OTP_WAITING_MESSAGE = (
    "i'm still waiting for your resy verification code. check your texts for a 6-digit code from resy"
)
OTP_REJECTED_MESSAGE = "that code didn't work. check the text from resy and try again"
OTP_SERVER_ERROR_MESSAGE = (
    "resy's servers are having issues right now. wait a minute and i'll resend a new code"
)
OTP_RESENT_MESSAGE = "just sent a new code. try again with the fresh one"
OTP_RESEND_FAILED_MESSAGE = (
    "i couldn't send a fresh code. send me any message in a bit and i'll try again"
)
OTP_RETRY_DELAY_SECONDS = 2.0

# ============================================================
# CHALLENGE FLOW
# ============================================================

CHALLENGE_NEW_USER_PROMPT = (
    "almost there! i need your resy email to finish connecting. what email did you use for resy?"
)
CHALLENGE_EXISTING_USER_PROMPT = "got it{name}! one more step. what's the email address on your resy account?"
CHALLENGE_ASK_EMAIL_NEW_USER = "what's the email address on your resy account?"
CHALLENGE_ASK_EMAIL_EXISTING_USER = (
    "i need the email address on your resy account to finish connecting. "
    "what email did you use to sign up for resy?"
)
CHALLENGE_EMAIL_MISMATCH = (
    "that email didn't match your resy account. try the email address you used to sign up for resy"
)
REGISTRATION_FAILED_MESSAGE = "i'm having trouble connecting your account automatically"
MANUAL_TOKEN_INSTRUCTIONS = (
    "you can connect manually: log into resy.com, open browser dev tools (F12), go to the "
    "Network tab, click any request, and copy the \"x-resy-auth-token\" header value. "
    "then paste it here"
)

# ============================================================
# SIGN OUT / COMMANDS
# ============================================================

SIGN_OUT_COMMANDS = {"sign out", "signout", "/signout", "log out", "logout"}
SIGNED_OUT_MESSAGE = (
    "you're signed out. your resy account is disconnected. text me anytime to reconnect"
)

CLEAR_COMMANDS = {"/clear", "/reset"}
FORGET_COMMANDS = {"/forget me", "/forgetme"}
HELP_COMMANDS = {"/help", "/commands"}

CLEAR_MESSAGE = "conversation cleared, fresh start 🧹"
FORGET_MESSAGE = "done, i've forgotten everything about you. we're strangers now 👋"
FORGET_UNKNOWN_MESSAGE = "hmm, couldn't figure out who you are to forget you"
HELP_MESSAGE = """here's what i can do:

🍽️ search restaurants and find open tables
📅 book, list and cancel your resy reservations
🧠 remember things you tell me

commands:
/bookings - see your upcoming reservations
/clear - reset our conversation
/forget me - erase what i know about you
/help - show this message"""

RECONNECT_MESSAGE = (
    "your resy session expired. text \"sign out\" and then message me again to reconnect your account"
)

# ============================================================
# AGENT
# ============================================================

DEFAULT_IMAGE_PROMPT = "What's in this image?"
RENAMED_CHAT_MESSAGE = 'renamed the chat to "{name}" 😎'
RESPONSE_PART_DELIMITER = "---"
GROUP_CLASSIFIER_HISTORY_TURNS = 4

# ============================================================
# WEB ONBOARDING
# ============================================================

MIN_CREDENTIAL_LENGTH = 10
MAX_CREDENTIAL_LENGTH = 500
