from .stock_model import BloodStock, StockMovement, StockAlert
from .donation_model import Donation
from .request_model import BloodRequest, FulfillmentEntry
