from marshmallow import Schema, fields, validate


class CheckoutSessionSchema(Schema):
    plan_id = fields.String(required=True, data_key="planId")
    plan_name = fields.String(required=True, data_key="planName", validate=validate.Length(min=1, max=100))
    price = fields.Decimal(required=True, places=2, validate=validate.Range(min=0, min_inclusive=False))
    currency = fields.String(load_default="usd", validate=validate.Length(equal=3))
    interval = fields.String(load_default="month", validate=validate.OneOf(["day", "week", "month", "year"]))


class PaymentOutSchema(Schema):
    id = fields.String()
    stripe_payment_id = fields.String(allow_none=True)
    amount = fields.Method("get_amount")
    currency = fields.String()
    status = fields.String()
    created_at = fields.DateTime()

    def get_amount(self, obj):
        # stored in minor units
        return (obj.get("amount") or 0) / 100


class SubscriptionOutSchema(Schema):
    plan_type = fields.String()
    status = fields.String()
    stripe_subscription_id = fields.String(allow_none=True)
    current_period_start = fields.DateTime(allow_none=True)
    current_period_end = fields.DateTime(allow_none=True)
    cancel_at_period_end = fields.Boolean()
    created_at = fields.DateTime()
    updated_at = fields.DateTime()
