"""
content.py
----------
Static copy for the public website: organisation details, services, goals,
membership tiers, member benefits, payment channels and contact channels.
"""

ORGANIZATION_NAME = "Private Practice in Social Work Zanzibar"
ORGANIZATION_SHORT_NAME = "PPSWZ"
SITE_URL = "https://ppswz.or.tz"

ABOUT = (
    "PPSWZ brings together social workers in private practice across Zanzibar "
    "to raise professional standards, support continuous learning and make "
    "reliable social services accessible to individuals, families and communities."
)

SERVICES = [
    {
        "title": "Professional Social Work Services",
        "description": "Counselling for individuals, couples, and families. Case management and "
                       "psychosocial services for vulnerable groups.",
    },
    {
        "title": "Capacity Building",
        "description": "Training for social work professionals, workshops on professional ethics, "
                       "coaching and mentorship.",
    },
    {
        "title": "Community Outreach & Education",
        "description": "Awareness campaigns on rights, mental health, child protection, family "
                       "wellbeing, and substance abuse.",
    },
    {
        "title": "Research & Policy Engagement",
        "description": "Research on social issues, professional consultation on policies, and "
                       "publishing reports.",
    },
    {
        "title": "Networking & Collaboration",
        "description": "Connecting social workers, building partnerships, and sharing knowledge "
                       "and best practices.",
    },
    {
        "title": "Ethical Oversight & Standards",
        "description": "Enforcement of PPSWZ Code of Ethics, review of ethical complaints, and "
                       "compliance monitoring.",
    },
    {
        "title": "Support to Vulnerable Groups",
        "description": "Counselling, family therapy, child protection, rehabilitation support, and "
                       "empowerment programs.",
    },
    {
        "title": "Private Practice Development",
        "description": "Business skills training, practice management, financial literacy, and "
                       "marketing guidance.",
    },
]

GOALS = [
    {
        "number": "01",
        "title": "Promote Professional Practice",
        "description": "Strengthen the quality, credibility, and visibility of private practice in "
                       "social work throughout Zanzibar.",
    },
    {
        "number": "02",
        "title": "Strengthen Ethical Standards",
        "description": "Ensure all practitioners adhere to a clear and enforceable Code of Ethics "
                       "that promotes dignity, justice, and integrity.",
    },
    {
        "number": "03",
        "title": "Continuous Professional Development",
        "description": "Offer training, workshops, supervision, and resources that enhance skills "
                       "and update practitioners with modern methods.",
    },
    {
        "number": "04",
        "title": "Advocate for Social Justice",
        "description": "Work with government, NGOs, and communities to shape policies that protect "
                       "vulnerable groups.",
    },
    {
        "number": "05",
        "title": "Build Strong Networks",
        "description": "Connect social workers for mentorship, career growth, research, and "
                       "collaboration.",
    },
    {
        "number": "06",
        "title": "Promote Accessible Services",
        "description": "Ensure individuals and families can access reliable, affordable, and "
                       "culturally responsive social services.",
    },
]

# Fees in Tanzanian shillings
MEMBERSHIP_TIERS = [
    {
        "type": "Full Member",
        "annual_fee": 50000,
        "registration_fee": 20000,
        "description": "For registered and licensed Social Workers practicing privately in Zanzibar.",
        "requirements": [
            "Diploma or Degree in Social Work",
            "Professional registration (if applicable)",
            "Active private practice",
        ],
        "featured": True,
    },
    {
        "type": "Associate Member",
        "annual_fee": 40000,
        "registration_fee": 15000,
        "description": "For professionals working in related fields (psychology, counselling, "
                       "community development).",
        "requirements": [
            "Relevant qualification",
            "Interest in private social work practice",
        ],
        "featured": False,
    },
    {
        "type": "Student Member",
        "annual_fee": 10000,
        "registration_fee": 5000,
        "description": "For students studying Social Work or related programs.",
        "requirements": [
            "Currently enrolled in Social Work program",
            "Valid student ID",
        ],
        "featured": False,
    },
    {
        "type": "Institutional Member",
        "annual_fee": 150000,
        "registration_fee": 50000,
        "description": "Organizations offering social services, NGOs, or private institutions.",
        "requirements": [
            "Registered organization",
            "Active in social service delivery",
        ],
        "featured": False,
    },
]

MEMBERSHIP_TYPES = tuple(tier["type"] for tier in MEMBERSHIP_TIERS)

BENEFITS = [
    "Professional networking & collaboration",
    "CPD trainings, workshops, and seminars",
    "Access to tools, templates & resources",
    "Recognition as a certified private practitioner",
    "Inclusion in the PPSWZ Directory",
]

PAYMENT_METHODS = [
    {
        "name": "M-Pesa",
        "type": "Mobile Money",
        "details": {"number": "0XXX XXX XXX", "name": "PPSWZ", "instructions": "Lipa Namba / Pay Number"},
    },
    {
        "name": "Mix by Yas",
        "type": "Mobile Payment",
        "details": {"number": "0XXX XXX XXX", "name": "PPSWZ", "instructions": "Send to registered number"},
    },
    {
        "name": "PBZ Bank",
        "type": "Bank Transfer",
        "details": {
            "account_number": "XXXX-XXXX-XXXX",
            "account_name": ORGANIZATION_NAME,
            "branch": "Stone Town Branch",
        },
    },
    {
        "name": "CRDB Bank",
        "type": "Bank Transfer",
        "details": {
            "account_number": "0152898853100",
            "account_name": ORGANIZATION_NAME,
            "branch": "Zanzibar Branch",
        },
    },
]

CONTACT_CHANNELS = [
    {"label": "Phone", "value": "+255 7XX XXX XXX", "subvalue": "+255 6XX XXX XXX"},
    {"label": "Email", "value": "info@ppswz.or.tz", "subvalue": "ppswz@gmail.com"},
    {"label": "Location", "value": "Zanzibar, Tanzania", "subvalue": ""},
    {"label": "Working Hours", "value": "Mon-Fri: 8:00 AM - 4:00 PM", "subvalue": "Sat: 9:00 AM - 1:00 PM"},
]

ACTION_LABELS = {
    "user_registered": "User Registered",
    "profile_update": "Profile Updated",
    "login": "Login",
    "logout": "Logout",
    "session_timeout": "Session Timeout",
    "membership_applied": "Membership Applied",
    "contact_submitted": "Contact Submitted",
}


def action_label(action):
    return ACTION_LABELS.get(action, action.replace("_", " ").title())


def get_tier(membership_type):
    for tier in MEMBERSHIP_TIERS:
        if tier["type"] == membership_type:
            return tier
    return None
