"""
User-facing copy for the chat dialogue.

Kept in one place so tenants can be given translated or rebranded copy
without touching dialogue logic. Placeholders use str.format fields.
"""

WELCOME = "Welcome to {name}! Tap a button below to book, shop or check your bookings."
MAIN_MENU = "What would you like to do?"
HELP = (
    "Send 'book' to make a booking, 'my bookings' to see or cancel one, "
    "'shop' for products and 'coupons' for offers. Send 'cancel' at any time to start over."
)
DIDNT_UNDERSTAND = "Sorry, I didn't understand that. Please tap one of the options."
CANCEL_HINT = "Send 'cancel' to start over."
SESSION_ENDED = "Your previous session has ended, so let's start again."
TRY_AGAIN_LATER = "Something went wrong on our side. Please try again in a moment."
BOOKING_UNAVAILABLE = "Online booking is temporarily unavailable. Please contact us directly."
BUSY = "Still working on your previous message. Please try again in a moment."
FLOW_CANCELLED = "Okay, cancelled. Nothing was booked."

CHOOSE_CATEGORY = "Which kind of service would you like?"
CHOOSE_SERVICE = "Which service would you like to book?"
CHOOSE_STAFF = "Who would you like to see?"
CHOOSE_DATE = "Pick a date for {service}."
NO_DATES = "Sorry, {service} has no free times in the next {days} days."
CHOOSE_TIME = "Pick a time on {date}."
NO_TIMES = "There are no free times left on {date}. Go back to pick another date."
ENTER_NOTE = "Anything we should know? Type a note, or tap Skip."
CONFIRM_BOOKING = "Please check your booking:\n{summary}"
SLOT_TAKEN = "Sorry, that time was just taken. Here is what is still open."
SERVICE_GONE = "Sorry, that service is no longer available."
INCOMPLETE_BOOKING = "Some booking details were missing, so let's start again."
BOOKING_DONE = (
    "You're booked! Reference {reference}.\n{summary}\nStatus: {status}.\n"
    "To cancel later, use 'my bookings' or cancellation code {token}."
)
EMPTY_CATEGORY = "There are no services in that category right now."

NO_BOOKINGS = "You have no upcoming bookings."
YOUR_BOOKINGS = "Your upcoming bookings. Tap one to cancel it."
CONFIRM_CANCEL = "Cancel this booking?\n{summary}"
BOOKING_CANCELLED = "Booking {reference} has been cancelled."
NOT_CANCELLABLE = "This booking can no longer be cancelled."

NO_PRODUCTS = "There are no products on sale right now."
CHOOSE_PRODUCT = "Here is what we have in store."
PRODUCT_DETAIL = "{name}\n{description}\nPrice: {price}\nIn stock: {stock}"
SOLD_OUT = "Sorry, {name} is sold out."
CHOOSE_QUANTITY = "How many would you like?"
CONFIRM_PURCHASE = "Buy {quantity} x {name} for {total}?"
OUT_OF_STOCK = "Sorry, there is not enough stock left for that order."
ORDER_DONE = "Order {order_no} placed: {quantity} x {name}, total {total}."

NO_COUPONS = "There are no coupons available right now."
CHOOSE_COUPON = "Tap a coupon to claim it."
COUPON_CLAIMED = "You claimed {name}. Show code {code} at the counter."

BACK_LABEL = "Back"
CANCEL_LABEL = "Cancel"
SKIP_LABEL = "Skip"
CONFIRM_LABEL = "Confirm"
NO_PREFERENCE_LABEL = "No preference"
BUY_LABEL = "Buy"
BOOK_LABEL = "Book"
SHOP_LABEL = "Shop"
COUPONS_LABEL = "Coupons"
MY_BOOKINGS_LABEL = "My bookings"
HELP_LABEL = "Help"
EARLIER_TIMES_LABEL = "Earlier times"
LATER_TIMES_LABEL = "Later times"
