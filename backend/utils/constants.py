"""
Constants used throughout the application.
"""

# Status Colors
# Using Tailwind CSS color palette for consistency
STATUS_COLORS = {
    # Invoice payment status
    'UNPAID': '#EF4444',             # Red-500 - Nothing received
    'PARTIALLY_PAID': '#8B5CF6',     # Purple-500 - Partial, still open
    'PAID': '#10B981',               # Green-500 - Settled
    # Delivery status
    'PENDING': '#F59E0B',            # Amber-500 - Waiting to ship
    'IN_TRANSIT': '#3B82F6',         # Blue-500 - On the road
    'DELIVERED': '#10B981',          # Green-500 - Terminal
    'CANCELLED': '#6B7280',          # Gray-500 - Terminal, stock restored
    'RETURNED': '#6B7280',           # Gray-500 - Terminal, stock restored
}

# Status Icons (optional, for frontend use)
STATUS_ICONS = {
    'UNPAID': '⚠️',
    'PARTIALLY_PAID': '📊',
    'PAID': '✅',
    'PENDING': '⏳',
    'IN_TRANSIT': '🚚',
    'DELIVERED': '✅',
    'CANCELLED': '❌',
    'RETURNED': '↩️',
}

# Movement reference prefixes. References are display text only; reversal
# tracking goes through StockMovement.reversal_of.
REFERENCE_DELIVERY = 'Delivery #{code}'
REFERENCE_DELIVERY_NOTE = 'Delivery Note #{code}'
REFERENCE_MANAGEMENT_STOCK = 'Stock Management #{code}'
REFERENCE_PRODUCTION = 'Production #{id}'
REFERENCE_REVERSAL = 'Reversal of {reference}'
