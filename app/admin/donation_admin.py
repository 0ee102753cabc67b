from sqladmin import ModelView

from app.models.donation_model import Donation


class DonationAdmin(ModelView, model=Donation):
    column_list = [
        Donation.id,
        Donation.donor_id,
        Donation.blood_type,
        Donation.quantity_ml,
        Donation.status,
        Donation.donation_date,
        Donation.expiry_date,
        Donation.center,
    ]

    column_formatters_detail = {
        "approved_by_id": lambda m, c: m.approved_by_id or "N/A",
    }

    column_searchable_list = [Donation.center]
    column_default_sort = [(Donation.donation_date, True)]

    form_columns = [Donation.notes]

    can_create = False
    can_edit = True
    can_delete = False
    can_view_details = True

    name = "Donation"
    name_plural = "Donations"
    icon = "fa-solid fa-syringe"
