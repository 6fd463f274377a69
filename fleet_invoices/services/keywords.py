"""Keyword and label-mapping tables shared by the classifier and normalizer.

Everything here is an immutable module-level constant, built once at
import time and safe to read from any request.
"""
from __future__ import annotations

from types import MappingProxyType

# ── Line-item keyword sets ───────────────────────────────────────────────

PART_KEYWORDS: frozenset[str] = frozenset({
    # Automotive parts
    "filter", "brake", "tire", "battery", "spark", "plug", "belt", "hose",
    "fluid", "gasket", "seal", "bearing", "rotor", "pad", "shoe", "disc", "drum",
    "alternator", "starter", "radiator", "thermostat", "pump", "sensor", "switch",
    "bulb", "fuse", "relay", "wire", "cable", "part", "component", "kit",
    # Fluids and consumables
    "coolant", "antifreeze", "transmission", "differential", "hydraulic", "grease",
    "additive", "cleaner", "sealant", "gasoline", "diesel", "windshield", "washer",
    # Engine
    "piston", "cylinder", "head", "block", "valve", "cam", "timing", "chain",
    "tensioner", "guide", "manifold", "injector", "throttle", "air", "intake",
    # Suspension and steering
    "shock", "strut", "spring", "control", "arm", "ball", "joint", "tie", "rod",
    "rack", "pinion", "power", "steering", "wheel",
    # Electrical
    "ignition", "coil", "distributor", "cap", "points", "condenser",
    "voltage", "regulator", "wiring", "harness", "connector", "terminal",
    # Drivetrain
    "clutch", "flywheel", "driveshaft", "axle", "cv", "universal", "bushing",
})

LABOR_KEYWORDS: frozenset[str] = frozenset({
    "labor", "labour", "diagnostic", "diagnosis", "balance", "balancing",
    "calibrate", "calibration", "bleed", "test", "testing",
    "maintenance", "tune", "overhaul", "rebuild", "refurbish",
    # Time-based
    "hour", "hours", "hr", "hrs", "time", "flat", "rate", "bench", "minimum",
    "programming", "setup",
    # Specific services
    "lube", "lubrication", "rotation",
    # Machine-shop work
    "weld", "welding", "machine", "machining", "resurface", "resurfacing",
    "bore", "boring", "hone", "honing", "press", "pressing", "cut", "cutting",
    "grind", "grinding", "thread", "threading", "tap", "tapping",
})

TAX_FEE_KEYWORDS: frozenset[str] = frozenset({
    "tax", "sales", "gst", "pst", "hst", "vat", "fee", "disposal", "environmental",
    "core", "charge", "hazmat", "hazardous", "material", "recycling", "shop",
    "supplies", "consumables", "misc", "miscellaneous", "surcharge", "freight",
    "shipping", "handling", "documentation", "admin", "administrative",
})

# Verbs that describe work performed; they weigh toward Labor but are
# scored separately from LABOR_KEYWORDS.
SERVICE_ACTIONS: frozenset[str] = frozenset({
    "replace", "replacement", "install", "installation", "repair", "service",
    "change", "flush", "adjust", "adjustment", "align", "alignment",
    "mount", "mounting", "remove", "removal", "check", "inspect", "inspection",
})

TIME_UNITS: frozenset[str] = frozenset({"hr", "hrs", "hour", "hours", "time"})

# Wider vocabularies used when re-scoring line items after OCR extraction.
EXPANDED_PART_KEYWORDS: frozenset[str] = PART_KEYWORDS | frozenset({
    "assembly", "caliper", "rim", "exhaust", "muffler", "catalytic", "pipe",
    "wiper", "blade", "headlight", "taillight", "module", "suspension",
    "lamp", "mirror", "gear", "solenoid", "bolt", "nut", "clamp",
})

EXPANDED_LABOR_KEYWORDS: frozenset[str] = LABOR_KEYWORDS | frozenset({
    "diagnostics", "troubleshoot", "troubleshooting", "scan", "reprogram",
    "evacuate", "recharge", "detail", "detailing", "hourly",
})

# Rows whose description contains one of these still count as line items
# even when they also look like a summary row ("brake service total").
VALID_ITEM_KEYWORDS: tuple[str, ...] = (
    "brake", "pad", "rotor", "disc", "caliper",
    "oil", "filter", "air filter", "fuel filter", "cabin filter",
    "spark plug", "ignition", "coil", "wire",
    "tire", "wheel", "rim", "bearing",
    "belt", "hose", "gasket", "seal",
    "battery", "alternator", "starter", "fuse",
    "fluid", "coolant", "transmission", "differential",
    "suspension", "shock", "strut", "spring",
    "exhaust", "muffler", "catalytic", "pipe",
    "wiper", "blade", "bulb", "headlight", "taillight",
    "sensor", "switch", "relay", "module",
    "labor", "service", "installation", "repair", "maintenance",
    "inspection", "diagnostic", "alignment", "balancing",
    "flush", "change", "replacement", "adjustment",
)

SUMMARY_ROW_KEYWORDS: tuple[str, ...] = (
    "subtotal", "sub total", "total", "grand total", "invoice total",
    "net total", "gross total", "amount due", "balance due", "amount owing",
    "total due", "total amount", "final total",
    "tax", "taxes", "sales tax", "tax total", "total tax",
    "vat", "gst", "hst", "pst", "qst",
    "discount", "discounts", "total discount",
    "shipping", "shipping cost", "shipping total", "freight",
    "delivery", "delivery charge", "handling", "handling fee",
    "processing fee", "convenience fee", "service fee",
    "administrative fee", "admin fee", "surcharge",
    "miscellaneous", "misc", "other charges", "additional charges", "extra charges",
)

# ── Field-label mappings ─────────────────────────────────────────────────

INVOICE_NUMBER = "InvoiceNumber"
VEHICLE_ID = "VehicleID"
ODOMETER = "Odometer"
INVOICE_DATE = "InvoiceDate"

_INVOICE_NUMBER_LABELS = (
    "Invoice", "Invoice No", "Invoice #", "Invoice Number",
    "Inv", "Inv No", "Inv #",
    "RO", "RO#", "RO No", "RO Number",
    "Repair Order", "Repair Order #", "Work Order", "Work Order #", "WO", "WO#",
    "Job", "Job #", "Job Number", "Ticket", "Ticket #", "Service #", "Order #",
    INVOICE_NUMBER,
)

_VEHICLE_ID_LABELS = (
    "Vehicle", "Vehicle ID", "Vehicle #", "Vehicle Number",
    "Veh", "Veh ID", "Veh #",
    "Unit", "Unit #", "Unit Number", "Fleet #", "Fleet Number",
    "Vehicle Registration", "Registration", "Reg", "Reg #",
    "License", "License #", "License Plate", "Plate", "Plate #",
    "VIN", "Stock", "Stock #", "Asset #", "Tag #",
    VEHICLE_ID,
)

_ODOMETER_LABELS = (
    "Odometer", "Odo", "Mileage", "Miles", "Mi", "Kilometers", "Km", "KMs",
    "Odometer Reading", "Current Mileage", "Total Miles", "Distance",
    "Reading", "Meter", "Mile",
)

_DATE_LABELS = (
    "Date", "Invoice Date", "Service Date", "Repair Date", "Work Date",
    "Completed", "Completed Date", "Date Completed", "Date of Service",
    "Date Serviced", "Serviced", "Date In", "Date Out",
    INVOICE_DATE,
)


def _build_label_mappings() -> dict[str, str]:
    mappings: dict[str, str] = {}
    for labels, target in (
        (_INVOICE_NUMBER_LABELS, INVOICE_NUMBER),
        (_VEHICLE_ID_LABELS, VEHICLE_ID),
        (_ODOMETER_LABELS, ODOMETER),
        (_DATE_LABELS, INVOICE_DATE),
    ):
        for label in labels:
            mappings[label.lower()] = target
    return mappings


# Lower-cased label → canonical field name, in insertion order.
LABEL_MAPPINGS = MappingProxyType(_build_label_mappings())
