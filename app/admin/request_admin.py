from sqladmin import ModelView

from app.models.request_model import BloodRequest


class BloodRequestAdmin(ModelView, model=BloodRequest):
    column_list = [
        BloodRequest.id,
        BloodRequest.blood_type,
        BloodRequest.quantity,
        BloodRequest.units_provided,
        BloodRequest.urgency,
        BloodRequest.priority,
        BloodRequest.status,
        BloodRequest.required_by,
        BloodRequest.hospital_name,
        BloodRequest.created_at,
    ]

    column_labels = {"units_provided": "Provided"}

    column_searchable_list = [BloodRequest.patient_name, BloodRequest.hospital_name]
    column_sortable_list = [
        BloodRequest.priority,
        BloodRequest.required_by,
        BloodRequest.created_at,
    ]
    column_default_sort = [(BloodRequest.priority, True)]

    form_columns = [
        BloodRequest.notes,
        BloodRequest.admin_notes,
    ]

    can_create = False
    can_edit = True
    can_delete = False
    can_view_details = True

    name = "Blood Request"
    name_plural = "Blood Requests"
    icon = "fa-solid fa-hand-holding-medical"
