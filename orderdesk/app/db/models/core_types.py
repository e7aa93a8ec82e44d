import enum


class Role(str, enum.Enum):
    buyer = "BUYER"
    supplier = "SUPPLIER"
    admin = "ADMIN"


class Uom(str, enum.Enum):
    # masse
    gram = "GRAM"
    kilogram = "KILOGRAM"
    ton = "TON"
    # volume
    milliliter = "MILLILITER"
    liter = "LITER"
    # longueur
    meter = "METER"
    centimeter = "CENTIMETER"
    kilometer = "KILOMETER"
    # comptage
    piece = "PIECE"


class BaseUom(str, enum.Enum):
    gram = "GRAM"
    kilogram = "KILOGRAM"
    milliliter = "MILLILITER"
    liter = "LITER"
    meter = "METER"
    piece = "PIECE"


class OrderStatus(str, enum.Enum):
    pending = "PENDING"
    approved = "APPROVED"
    fulfilled = "FULFILLED"
    cancelled = "CANCELLED"


class MovementType(str, enum.Enum):
    deduct = "DEDUCT"
    restore = "RESTORE"
    restock = "RESTOCK"
    correction = "CORRECTION"
