"""
Data models for the pricing engine.

Uses dataclasses for structured, type-safe data representation. Factory rate
tables are pandas DataFrames whose row order is significant and never re-sorted.
"""
from dataclasses import dataclass, field, fields, replace
from enum import Enum
from typing import Optional

import pandas as pd


class ProductType(str, Enum):
    FRESH = "Fresh"
    FROZEN = "Frozen"


# Fixed per-kg freezing rates; not configurable per factory
FREEZING_RATES = {
    "Tunnel Freezing": 1.65,
    "Gyro Freezing": 2.00,
}

FREEZING_TYPE_ALIASES = {
    "TunnelFreezing": "Tunnel Freezing",
    "GyroFreezing": "Gyro Freezing",
    "none": "",
}

# Canonical table columns
RATE_COLUMNS = ['product', 'trim_type', 'rm_spec', 'rate_per_kg']
PACKAGING_COLUMNS = ['prod_type', 'product', 'box_qty', 'pack', 'transport_mode', 'packaging_rate']
CHARGE_RATE_COLUMNS = ['charge_name', 'product_type', 'product', 'subtype', 'rate_value']

NUMERIC_COLUMNS = {'rate_per_kg', 'packaging_rate', 'rate_value'}

# Source spellings seen in exported factory data
COLUMN_ALIASES = {
    'trimtype': 'trim_type',
    'rmspec': 'rm_spec',
    'rateperkg': 'rate_per_kg',
    'prodtype': 'prod_type',
    'boxqty': 'box_qty',
    'packaging_type': 'pack',
    'packagingtype': 'pack',
    'transportmode': 'transport_mode',
    'packagingrate': 'packaging_rate',
    'chargename': 'charge_name',
    'producttype': 'product_type',
    'ratevalue': 'rate_value',
    'id': 'id',
    'factoryid': 'id',
}


def normalize_column_name(name: str) -> str:
    """Map a raw column header onto the canonical snake_case name."""
    key = str(name).strip()
    # camelCase -> snake_case before lowering
    snake = ''.join('_' + c.lower() if c.isupper() else c for c in key).lstrip('_')
    snake = snake.lower().replace(' ', '_').replace('-', '_')
    while '__' in snake:
        snake = snake.replace('__', '_')
    return COLUMN_ALIASES.get(snake.replace('_', ''), COLUMN_ALIASES.get(snake, snake))


def normalize_table(df: Optional[pd.DataFrame], columns: list[str]) -> pd.DataFrame:
    """
    Normalize a rate table to the canonical columns.

    Headers are mapped through COLUMN_ALIASES, string cells are stripped,
    numeric columns are coerced (blank -> 0.0) and missing columns are added
    empty. Row order is preserved.
    """
    if df is None or df.empty:
        return pd.DataFrame(columns=columns)

    df = df.rename(columns={c: normalize_column_name(c) for c in df.columns})
    df = df.loc[:, ~df.columns.duplicated()].copy()

    for col in columns:
        if col not in df.columns:
            df[col] = 0.0 if col in NUMERIC_COLUMNS else ''

    df = df[columns].reset_index(drop=True)
    for col in columns:
        if col in NUMERIC_COLUMNS:
            df[col] = pd.to_numeric(df[col], errors='coerce').fillna(0.0).astype(float)
        else:
            df[col] = df[col].fillna('').astype(str).str.strip()
            # Box quantities exported from spreadsheets come back as "10.0"
            df[col] = df[col].str.replace(r'^(\d+)\.0$', r'\1', regex=True)
    return df


FEE_FIELDS = (
    'pallet_charge',
    'terminal_charge',
    'reception_fee',
    'dispatch_fee',
    'environmental_fee_percentage',
    'electricity_fee_percentage',
    'storage_rate',
)


@dataclass(eq=False)
class Factory:
    """A processing factory with its rate tables and scalar fee fields."""
    id: str
    name: str
    location: str = ""
    currency: str = "$"
    rate_data: pd.DataFrame = field(default_factory=lambda: pd.DataFrame(columns=RATE_COLUMNS))
    packaging_data: pd.DataFrame = field(default_factory=lambda: pd.DataFrame(columns=PACKAGING_COLUMNS))
    charge_rates: pd.DataFrame = field(default_factory=lambda: pd.DataFrame(columns=CHARGE_RATE_COLUMNS))
    pallet_charge: float = 0.0
    terminal_charge: float = 0.0
    reception_fee: float = 0.0
    dispatch_fee: float = 0.0
    environmental_fee_percentage: float = 0.0
    electricity_fee_percentage: float = 0.0
    storage_rate: float = 0.0

    def __post_init__(self):
        self.rate_data = normalize_table(self.rate_data, RATE_COLUMNS)
        self.packaging_data = normalize_table(self.packaging_data, PACKAGING_COLUMNS)
        self.charge_rates = normalize_table(self.charge_rates, CHARGE_RATE_COLUMNS)
        # Unset fees count as 0
        for name in FEE_FIELDS:
            value = getattr(self, name)
            setattr(self, name, 0.0 if value is None or pd.isna(value) else float(value))

    @classmethod
    def from_records(
        cls,
        id: str,
        name: str,
        rate_data: Optional[list[dict]] = None,
        packaging_data: Optional[list[dict]] = None,
        charge_rates: Optional[list[dict]] = None,
        **scalars
    ) -> 'Factory':
        """Build a factory from plain row dicts (as delivered by the persistence layer)."""
        return cls(
            id=id,
            name=name,
            rate_data=pd.DataFrame(rate_data or []),
            packaging_data=pd.DataFrame(packaging_data or []),
            charge_rates=pd.DataFrame(charge_rates or []),
            **scalars
        )


@dataclass(frozen=True)
class JobSpecification:
    """A fully-specified processing job for one quote line."""
    product_type: str = ""
    product: str = ""
    trim_type: str = ""
    rm_spec: str = ""
    freezing_type: str = ""
    quantity: float = 1.0  # kg
    yield_value: float = 0.0  # percent
    box_qty: str = ""
    packaging_type: str = ""
    transport_mode: str = ""
    is_storage_required: bool = False
    number_of_weeks: float = 1.0
    filing_rate: float = 0.0
    description: str = ""

    @property
    def is_frozen(self) -> bool:
        return self.product_type == ProductType.FROZEN.value

    @property
    def freezing_rate(self) -> float:
        if not self.is_frozen:
            return 0.0
        return FREEZING_RATES.get(canonical_freezing_type(self.freezing_type), 0.0)

    def with_changes(self, **changes) -> 'JobSpecification':
        return replace(self, **changes)

    @classmethod
    def from_enquiry_item(cls, item: dict) -> 'JobSpecification':
        """Seed a job from an enquiry item record; unknown keys are ignored."""
        def text(key: str) -> str:
            value = item.get(key)
            return str(value).strip() if value is not None else ""

        quantity = item.get('requestedQuantity')
        try:
            quantity = float(quantity) if quantity not in (None, '') else 1.0
        except (TypeError, ValueError):
            quantity = 1.0

        return cls(
            product_type=text('productType'),
            product=text('product'),
            trim_type=text('trimType'),
            rm_spec=text('rmSpec'),
            packaging_type=text('packagingType'),
            box_qty=text('boxQuantity'),
            quantity=quantity,
            description=text('productDescription'),
        )


def canonical_freezing_type(value: Optional[str]) -> str:
    """Map enum spellings ("TunnelFreezing") onto the display labels used in rate tables."""
    if not value:
        return ""
    value = str(value).strip()
    return FREEZING_TYPE_ALIASES.get(value, value)


# Toggle names as used by callers, mapped to ToggleState attributes
TOGGLE_ALIASES = {
    'palletCharge': 'pallet_charge',
    'terminalCharge': 'terminal_charge',
    'receptionFee': 'reception_fee',
    'dispatchFee': 'dispatch_fee',
    'environmentalFee': 'environmental_fee',
    'electricityFee': 'electricity_fee',
    'prodAB': 'prod_ab',
    'descaling': 'descaling',
    'portionSkinOn': 'portion_skin_on',
    'portionSkinOff': 'portion_skin_off',
}

# Toggles forced together by storage and by leaving Frozen
FREEZING_FEE_TOGGLES = ('reception_fee', 'dispatch_fee', 'environmental_fee', 'electricity_fee')


@dataclass(frozen=True)
class ToggleState:
    """The ten named switches of one job line."""
    pallet_charge: bool = True
    terminal_charge: bool = True
    reception_fee: bool = False
    dispatch_fee: bool = False
    environmental_fee: bool = False
    electricity_fee: bool = False
    prod_ab: bool = False
    descaling: bool = False
    portion_skin_on: bool = False
    portion_skin_off: bool = False

    @staticmethod
    def field_name(name: str) -> str:
        """Resolve a camelCase or snake_case toggle name; raises KeyError for unknown names."""
        name = TOGGLE_ALIASES.get(name, name)
        if name not in {f.name for f in fields(ToggleState)}:
            raise KeyError(f"Unknown toggle '{name}'")
        return name

    def is_enabled(self, name: str) -> bool:
        return getattr(self, self.field_name(name))

    def with_changes(self, **changes) -> 'ToggleState':
        return replace(self, **changes)


@dataclass(frozen=True)
class OptionalCharge:
    """A named extra charge on a job line (computed or user-entered)."""
    name: str
    value: float


@dataclass
class TraceStep:
    """A single step in the cost resolution trace."""
    step: str
    description: str
    value: Optional[str] = None


@dataclass
class CostBreakdown:
    """Derived cost figures for one job line. Recomputed on every input change."""
    filleting_amount: float = 0.0
    packaging_amount: float = 0.0
    additional_charges: float = 0.0
    freezing_charge: float = 0.0
    optional_total: float = 0.0
    frozen_flat_fees: float = 0.0
    subtotal: float = 0.0
    percentage_fees: float = 0.0
    total: float = 0.0
    cost_per_kg: float = 0.0

    # Components of the frozen fees, for display
    reception_fee_amount: float = 0.0
    dispatch_fee_amount: float = 0.0
    storage_charge: float = 0.0
    storage_weeks: int = 0
    environmental_fee_amount: float = 0.0
    electricity_fee_amount: float = 0.0
    transport_mode: str = ""

    warnings: list[str] = field(default_factory=list)
    trace: list[TraceStep] = field(default_factory=list)

    @property
    def storage_label(self) -> str:
        if not self.storage_weeks:
            return ""
        return f"{self.storage_weeks} {'week' if self.storage_weeks == 1 else 'weeks'}"

    def add_trace(self, step: str, description: str, value: str = None):
        """Add a step to the trace for this breakdown."""
        self.trace.append(TraceStep(step=step, description=description, value=value))

    def add_warning(self, warning: str):
        """Add a warning for this breakdown."""
        if warning not in self.warnings:
            self.warnings.append(warning)

    def get_trace_text(self) -> str:
        """Get human-readable trace as formatted text."""
        lines = []
        for t in self.trace:
            if t.value:
                lines.append(f"→ {t.step}: {t.description} = {t.value}")
            else:
                lines.append(f"→ {t.step}: {t.description}")
        return "\n".join(lines)

    def to_dict(self) -> dict:
        """Convert to the camelCase dict handed to the quote persistence layer."""
        return {
            "filletingAmount": self.filleting_amount,
            "packagingAmount": self.packaging_amount,
            "additionalCharges": self.additional_charges,
            "freezingCharge": self.freezing_charge,
            "optionalTotal": self.optional_total,
            "frozenFlatFees": self.frozen_flat_fees,
            "subtotal": self.subtotal,
            "percentageFees": self.percentage_fees,
            "total": self.total,
            "costPerKg": self.cost_per_kg,
            "storageLabel": self.storage_label,
            "transportMode": self.transport_mode,
            "warnings": list(self.warnings),
        }


@dataclass
class QuoteLine:
    """A single job line in a quote result."""
    job: JobSpecification
    breakdown: CostBreakdown
    label: str = ""


@dataclass
class QuoteResult:
    """Complete result of pricing several job lines against one factory."""
    factory_id: str
    currency: str
    total: float
    lines: list[QuoteLine]
    warnings: list[str] = field(default_factory=list)
    trace: list[TraceStep] = field(default_factory=list)

    def add_trace(self, step: str, description: str, value: str = None):
        """Add a step to the result-level trace."""
        self.trace.append(TraceStep(step=step, description=description, value=value))

    def add_warning(self, warning: str):
        """Add a result-level warning."""
        self.warnings.append(warning)

    def get_trace_text(self) -> str:
        """Get human-readable result trace as formatted text."""
        lines = []
        for t in self.trace:
            if t.value:
                lines.append(f"• {t.step}: {t.description} = {t.value}")
            else:
                lines.append(f"• {t.step}: {t.description}")
        return "\n".join(lines)
