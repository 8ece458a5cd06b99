"""TuitionPay API - enrollment billing and payment reconciliation."""
