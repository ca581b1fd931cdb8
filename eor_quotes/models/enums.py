from enum import Enum

class ProviderType(str, Enum):
    DEEL = "deel"
    REMOTE = "remote"
    RIVERMATE = "rivermate"
    OYSTER = "oyster"
    RIPPLING = "rippling"
    SKUAD = "skuad"
    VELOCITY = "velocity"

class QuoteType(str, Enum):
    ALL_INCLUSIVE = "all-inclusive"
    STATUTORY_ONLY = "statutory-only"

class BenefitKey(str, Enum):
    THIRTEENTH_SALARY = "thirteenthSalary"
    FOURTEENTH_SALARY = "fourteenthSalary"
    VACATION_BONUS = "vacationBonus"
    TRANSPORTATION_ALLOWANCE = "transportationAllowance"
    REMOTE_WORK_ALLOWANCE = "remoteWorkAllowance"
    MEAL_VOUCHERS = "mealVouchers"
    SOCIAL_SECURITY = "socialSecurity"
    HEALTH_INSURANCE = "healthInsurance"
    SEVERANCE_PROVISION = "severanceProvision"
    PROBATION_PROVISION = "probationProvision"

class Frequency(str, Enum):
    MONTHLY = "monthly"
    YEARLY = "yearly"
    UPON_TERMINATION = "upon-termination"

class EnhancementErrorCode(str, Enum):
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
    INVALID_API_KEY = "INVALID_API_KEY"
    REQUEST_TIMEOUT = "REQUEST_TIMEOUT"
    RESPONSE_PARSE_ERROR = "RESPONSE_PARSE_ERROR"
    GROQ_ERROR = "GROQ_ERROR"
    ENHANCEMENT_ERROR = "ENHANCEMENT_ERROR"
