"""Builders for message blocks and their bounded option menus."""

from datetime import date, time
from typing import Optional

from bookingbot.config import settings
from bookingbot.conversation.input_parser import build_postback
from bookingbot.messages import texts
from bookingbot.schemas.booking_schema import Booking
from bookingbot.schemas.catalog_schema import ServiceCategory, ServiceItem
from bookingbot.schemas.channel_schema import MenuOption, MessageBlock
from bookingbot.schemas.shop_schema import Coupon, Product
from bookingbot.schemas.staff_schema import Staff
from bookingbot.tools.availability import DateAvailability
from bookingbot.utils import format_clock, format_date_label


def option(label: str, action: str, **params: str) -> MenuOption:
    return MenuOption(id=build_postback(action, **params), label=label)


def format_price(amount: int) -> str:
    return f"${amount:,}"


def _menu(
    text: str,
    choices: list[MenuOption],
    back: bool = True,
    cancel: bool = True,
    limit: Optional[int] = None,
) -> MessageBlock:
    """A block whose choices are cut so that choices plus navigation fit ``limit``."""
    nav: list[MenuOption] = []
    if back:
        nav.append(option(texts.BACK_LABEL, "go_back"))
    if cancel:
        nav.append(option(texts.CANCEL_LABEL, "cancel_flow"))
    limit = limit or settings.conversation.max_menu_options
    return MessageBlock(text=text, options=choices[: max(limit - len(nav), 0)] + nav)


def main_menu_block() -> MessageBlock:
    return MessageBlock(text=texts.MAIN_MENU, options=[
        option(texts.BOOK_LABEL, "start_booking"),
        option(texts.MY_BOOKINGS_LABEL, "view_bookings"),
        option(texts.SHOP_LABEL, "start_shopping"),
        option(texts.COUPONS_LABEL, "view_coupons"),
        option(texts.HELP_LABEL, "help"),
    ])


def category_block(categories: list[ServiceCategory], limit: Optional[int] = None) -> MessageBlock:
    return _menu(
        texts.CHOOSE_CATEGORY,
        [option(c.name, "select_category", categoryId=c.id) for c in categories],
        limit=limit,
    )


def service_block(services: list[ServiceItem], limit: Optional[int] = None) -> MessageBlock:
    return _menu(
        texts.CHOOSE_SERVICE,
        [
            option(f"{s.name} ({s.duration_minutes} min, {format_price(s.price)})",
                   "select_service", serviceId=s.id)
            for s in services
        ],
        limit=limit,
    )


def staff_block(staff: list[Staff], limit: Optional[int] = None) -> MessageBlock:
    choices = [option(texts.NO_PREFERENCE_LABEL, "select_staff", staffId="")]
    choices += [option(s.name, "select_staff", staffId=s.id) for s in staff]
    return _menu(texts.CHOOSE_STAFF, choices, limit=limit)


def date_block(
    service_name: str, dates: list[DateAvailability], horizon_days: int, limit: Optional[int] = None
) -> MessageBlock:
    if not dates:
        return _menu(texts.NO_DATES.format(service=service_name, days=horizon_days), [], limit=limit)
    return _menu(
        texts.CHOOSE_DATE.format(service=service_name),
        [
            option(format_date_label(d["date"]), "select_date", date=d["date"].isoformat())
            for d in dates
        ],
        limit=limit,
    )


def time_block(
    target_date: date, slots: list[time], limit: Optional[int] = None, page: int = 0
) -> MessageBlock:
    """Slots for one day, a page at a time, with Earlier/Later buttons between pages."""
    label = format_date_label(target_date)
    if not slots:
        return _menu(texts.NO_TIMES.format(date=label), [], limit=limit)
    limit = limit or settings.conversation.max_menu_options
    # Two seats go to Back and Cancel, two more to the paging buttons.
    per_page = max(limit - 4, 1)
    last_page = (len(slots) - 1) // per_page
    page = min(max(page, 0), last_page)
    choices = []
    if page > 0:
        choices.append(option(texts.EARLIER_TIMES_LABEL, "time_page", page=str(page - 1)))
    start = page * per_page
    choices += [
        option(format_clock(t), "select_time", time=format_clock(t))
        for t in slots[start:start + per_page]
    ]
    if page < last_page:
        choices.append(option(texts.LATER_TIMES_LABEL, "time_page", page=str(page + 1)))
    return _menu(texts.CHOOSE_TIME.format(date=label), choices, limit=limit)


def note_block() -> MessageBlock:
    return _menu(texts.ENTER_NOTE, [option(texts.SKIP_LABEL, "skip_note")])


def booking_summary(
    service: ServiceItem,
    staff_name: Optional[str],
    booking_date: date,
    start: time,
    end: time,
    note: Optional[str] = None,
) -> str:
    lines = [
        f"Service: {service.name} ({format_price(service.price)})",
        f"Staff: {staff_name or texts.NO_PREFERENCE_LABEL}",
        f"Date: {format_date_label(booking_date)}",
        f"Time: {format_clock(start)}-{format_clock(end)}",
    ]
    if note:
        lines.append(f"Note: {note}")
    return "\n".join(lines)


def confirm_booking_block(summary: str) -> MessageBlock:
    return _menu(
        texts.CONFIRM_BOOKING.format(summary=summary),
        [option(texts.CONFIRM_LABEL, "confirm_booking")],
    )


def describe_booking(booking: Booking) -> str:
    return (
        f"{format_date_label(booking.booking_date)} {format_clock(booking.start_time)} "
        f"{booking.service_name}"
    )


def bookings_block(bookings: list[Booking], limit: Optional[int] = None) -> MessageBlock:
    return _menu(
        texts.YOUR_BOOKINGS,
        [
            option(describe_booking(b), "cancel_booking_request", bookingId=b.id)
            for b in bookings
        ],
        limit=limit,
    )


def confirm_cancel_block(booking: Booking) -> MessageBlock:
    return _menu(
        texts.CONFIRM_CANCEL.format(summary=describe_booking(booking)),
        [option(texts.CONFIRM_LABEL, "confirm_cancel_booking", bookingId=booking.id)],
    )


def product_list_block(products: list[Product], limit: Optional[int] = None) -> MessageBlock:
    return _menu(
        texts.CHOOSE_PRODUCT,
        [
            option(f"{p.name} ({format_price(p.price)})", "select_product", productId=p.id)
            for p in products
        ],
        limit=limit,
    )


def product_detail_block(product: Product, max_quantity: int) -> MessageBlock:
    text = texts.PRODUCT_DETAIL.format(
        name=product.name,
        description=product.description,
        price=format_price(product.price),
        stock=product.stock,
    )
    if max_quantity < 1:
        return _menu(f"{text}\n{texts.SOLD_OUT.format(name=product.name)}", [])
    return _menu(text, [option(texts.BUY_LABEL, "buy_product", productId=product.id)])


def quantity_block(max_quantity: int) -> MessageBlock:
    return _menu(
        texts.CHOOSE_QUANTITY,
        [option(str(q), "select_quantity", quantity=str(q)) for q in range(1, max_quantity + 1)],
    )


def confirm_purchase_block(product: Product, quantity: int) -> MessageBlock:
    return _menu(
        texts.CONFIRM_PURCHASE.format(
            quantity=quantity, name=product.name, total=format_price(product.price * quantity),
        ),
        [option(texts.CONFIRM_LABEL, "confirm_purchase")],
    )


def coupon_block(coupons: list[Coupon], limit: Optional[int] = None) -> MessageBlock:
    return _menu(
        texts.CHOOSE_COUPON,
        [option(c.name, "claim_coupon", couponId=c.id) for c in coupons],
        cancel=False,
        limit=limit,
    )
