"""Clinic facts seeded into the vector index as ``clinic_information`` points."""

from __future__ import annotations

from clinic_assistant.services.retrieval import TYPE_CLINIC_INFO

CLINIC_INFORMATION: tuple[dict[str, str], ...] = (
    {
        "text": "Our clinic is open Monday to Saturday from 9:00 AM to 7:00 PM. "
                "We are closed on Sundays.",
        "intent": "hours",
        "category": "clinic-info",
    },
    {
        "text": "To book an appointment, please provide your full name, preferred date, "
                "time slot, and the department you want to visit.",
        "intent": "book_appointment",
        "category": "instructions",
    },
    {
        "text": "Dr. Smith is a general physician available from 10 AM to 2 PM, "
                "Monday to Friday.",
        "intent": "doctor_availability",
        "department": "General Medicine",
        "doctor": "Dr. Smith",
    },
    {
        "text": "Dr. Priya Sharma is our dermatologist, and is available on Tuesday, "
                "Thursday, and Saturday from 11 AM to 4 PM.",
        "intent": "doctor_availability",
        "department": "Dermatology",
        "doctor": "Dr. Priya Sharma",
    },
    {
        "text": "You can cancel your appointment up to 4 hours before your scheduled time "
                "by messaging us or calling our front desk.",
        "intent": "cancel_policy",
        "category": "policies",
    },
    {
        "text": "We offer appointments for General Medicine, Dermatology, Pediatrics, "
                "Cardiology, and Dental care.",
        "intent": "departments",
        "category": "clinic-info",
    },
    {
        "text": "The clinic is located at 123 Health Street, New York, NY 10001. "
                "Parking is available for all patients.",
        "intent": "location",
        "category": "clinic-info",
    },
    {
        "text": "Walk-in patients are accepted but we recommend booking an appointment "
                "to avoid waiting time.",
        "intent": "walkin_policy",
        "category": "clinic-info",
    },
    {
        "text": "For emergencies, call 911 or go to the nearest hospital. "
                "Our clinic does not handle emergency cases.",
        "intent": "emergency_policy",
        "category": "policies",
    },
    {
        "text": "You will receive a confirmation message once your appointment is booked.",
        "intent": "confirmation",
        "category": "process",
    },
)


def clinic_documents() -> list[dict[str, str]]:
    """The clinic facts as upsert-ready documents tagged ``clinic_information``."""
    return [{**item, "type": TYPE_CLINIC_INFO} for item in CLINIC_INFORMATION]
