ORDER_PENDING = "pending"
ORDER_CONFIRMED = "confirmed"
ORDER_STATUSES = (ORDER_PENDING, ORDER_CONFIRMED)

CART_KEY = "cart"

# welcome screen is shown again after a month or when the version changes
WELCOME_VERSION = 3
PREFERENCE_TTL = 60 * 60 * 24 * 30

CITIES = ["Ibarra", "Otavalo", "Atuntaqui", "Cotacachi"]
SECTORS = ["Centro", "Norte", "Sur", "Otro"]

PRODUCT_NAME_MAX = 100
PRODUCT_DESCRIPTION_MAX = 500
