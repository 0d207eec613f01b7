"""spanstream quick start: trace a request and ship it to a local agent."""

import spanstream

# 1. Start the default pipeline. Unset options come from SPANSTREAM_* variables.
spanstream.init(
    service_name="checkout-service",
    agent_host="localhost",
    agent_port=6832,
)

requests = spanstream.meter()
route = requests.labels(route="/checkout")

# 2. Trace an operation
with spanstream.entries(tenant="acme"):
    with spanstream.span("handle-checkout", attributes={"cart.items": 3}) as s:
        requests.record("requests", 1, route)

        with spanstream.span("reserve-stock") as child:
            child.set_attribute("warehouse", "eu-1")
            child.add_event("stock-reserved", {"sku": "A-100"})

        with spanstream.span("charge-card") as child:
            child.set_attribute("provider", "example-pay")

        s.update_name("checkout")

# 3. Shutdown (delivers pending events and flushes remaining spans)
spanstream.shutdown()

print("Done! Spans were sent to the agent at localhost:6832")
