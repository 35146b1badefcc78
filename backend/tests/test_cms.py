import io
import uuid
from types import SimpleNamespace

from PIL import Image

from studyabroad.services.cms import MenuService
from studyabroad.utils.text import mask_secret


def unique(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:8]}"


def _make_png() -> bytes:
    buf = io.BytesIO()
    Image.new('RGB', (4, 4), color=(200, 30, 30)).save(buf, format='PNG')
    return buf.getvalue()


def _menu(client, h, **fields):
    payload = {'name': unique('Menu'), 'location': 'CUSTOM', **fields}
    r = client.post('/menus', json=payload, headers=h)
    assert r.status_code == 201, r.text
    return r.json()


def _item(client, h, menu_id, label, **fields):
    r = client.post(f'/menus/{menu_id}/items', json={'label': label, 'url': f'/{label.lower()}', **fields}, headers=h)
    assert r.status_code == 201, r.text
    return r.json()


def test_mask_secret():
    assert mask_secret('') == ''
    assert mask_secret('short') == '*****'
    assert mask_secret('abcd12345678wxyz') == 'abcd********wxyz'


def test_build_tree_promotes_orphans():
    class _Item(SimpleNamespace):
        def model_dump(self):
            return dict(vars(self))

    items = [_Item(id=1, parent_id=None), _Item(id=2, parent_id=1), _Item(id=3, parent_id=99)]
    tree = MenuService.build_tree(items)
    assert [n['id'] for n in tree] == [1, 3]
    assert [c['id'] for c in tree[0]['children']] == [2]


def test_menu_tree_and_location_lookup(client, admin, headers):
    h = headers(admin)
    menu = _menu(client, h, location='SIDEBAR')
    about = _item(client, h, menu['id'], 'About')
    team = _item(client, h, menu['id'], 'Team', parent_id=about['id'])
    _item(client, h, menu['id'], 'Contact')
    assert team['order_index'] == 0

    r = client.get('/menus/by-location/sidebar')
    assert r.status_code == 200
    items = r.json()['items']
    assert [i['label'] for i in items] == ['About', 'Contact']
    assert items[0]['children'][0]['label'] == 'Team'

    assert client.get('/menus/by-location/attic').status_code == 400
    assert client.get('/menus/by-location/mobile').status_code == 404


def test_menu_parent_rules(client, admin, headers):
    h = headers(admin)
    menu = _menu(client, h)
    other = _menu(client, h)
    root = _item(client, h, menu['id'], 'Root')
    child = _item(client, h, menu['id'], 'Child', parent_id=root['id'])
    stranger = _item(client, h, other['id'], 'Stranger')

    r = client.post(f"/menus/{menu['id']}/items", json={'label': 'Bad', 'parent_id': stranger['id']}, headers=h)
    assert r.status_code == 400
    r = client.put(f"/menus/{menu['id']}/items/{root['id']}", json={'parent_id': child['id']}, headers=h)
    assert r.status_code == 400
    r = client.put(f"/menus/{menu['id']}/items/{root['id']}", json={'parent_id': root['id']}, headers=h)
    assert r.status_code == 400

    r = client.post(f"/menus/{menu['id']}/items/reorder", json={'item_ids': [child['id'], stranger['id']]}, headers=h)
    assert r.status_code == 400


def test_menu_reorder_and_cascading_delete(client, admin, headers):
    h = headers(admin)
    menu = _menu(client, h)
    first = _item(client, h, menu['id'], 'First')
    second = _item(client, h, menu['id'], 'Second')
    nested = _item(client, h, menu['id'], 'Nested', parent_id=second['id'])
    _item(client, h, menu['id'], 'Deeper', parent_id=nested['id'])

    r = client.post(f"/menus/{menu['id']}/items/reorder", json={'item_ids': [second['id'], first['id']]}, headers=h)
    assert r.status_code == 200
    assert [i['label'] for i in r.json()['items']] == ['Second', 'First']

    r = client.delete(f"/menus/{menu['id']}/items/{second['id']}", headers=h)
    assert r.json()['removed'] == 3
    detail = client.get(f"/menus/{menu['id']}", headers=h).json()
    assert [i['label'] for i in detail['items']] == ['First']

    assert client.delete(f"/menus/{menu['id']}", headers=h).status_code == 200
    assert client.get(f"/menus/{menu['id']}", headers=h).status_code == 404


def test_menus_are_admin_only(client, student, headers):
    assert client.post('/menus', json={'name': 'Sneaky'}, headers=headers(student)).status_code == 403


def test_settings_mask_secrets(client, admin, student, headers):
    h = headers(admin)
    payload = {'settings': {
        'integrations': {'mailchimp_secret': 'abcd12345678wxyz', 'list_id': 'students'},
        'general': {'site_name': 'Global Pathways'},
    }}
    r = client.put('/admin/settings', json=payload, headers=h)
    assert r.status_code == 200
    masked = r.json()['settings']['integrations']['mailchimp_secret']
    assert masked == 'abcd********wxyz'

    # echoing the masked value back keeps the stored secret
    client.put('/admin/settings', json={'settings': {'integrations': {'mailchimp_secret': masked}}}, headers=h)
    r = client.put('/admin/settings', json={'settings': {'integrations': {'list_id': 'alumni'}}}, headers=h)
    assert r.json()['settings']['integrations'] == {'mailchimp_secret': 'abcd********wxyz', 'list_id': 'alumni'}

    public = client.get('/settings/site').json()
    assert public['general']['site_name'] == 'Global Pathways'
    assert 'integrations' not in public
    assert public['payment']['razorpay']['enabled'] is True
    assert client.get('/admin/settings', headers=headers(student)).status_code == 403


def test_pages(client, admin, headers):
    h = headers(admin)
    slug = unique('about-us').lower()
    r = client.post('/admin/pages', json={
        'title': 'About us', 'slug': slug, 'content': '<p>Hello</p>',
        'sections': [{'section_type': 'hero', 'title': 'Welcome'}, {'title': 'Team'}],
    }, headers=h)
    assert r.status_code == 201
    page = r.json()
    assert [s['title'] for s in page['sections']] == ['Welcome', 'Team']
    assert client.post('/admin/pages', json={'title': 'Again', 'slug': slug}, headers=h).status_code == 409

    assert client.get(f'/pages/{slug}').status_code == 404
    client.put(f"/admin/pages/{page['id']}", json={'is_published': True}, headers=h)
    assert client.get(f'/pages/{slug}').json()['title'] == 'About us'

    assert client.delete(f"/admin/pages/{page['id']}", headers=h).status_code == 200
    assert client.get(f'/pages/{slug}').status_code == 404


def test_blog_views_and_categories(client, admin, headers):
    h = headers(admin)
    category = unique('Visas')
    r = client.post('/admin/blog/posts', json={
        'title': 'Student visa checklist', 'content': 'Bring your passport.', 'category': category,
        'tags': ['visa'], 'is_published': True,
    }, headers=h)
    assert r.status_code == 201
    post = r.json()
    assert post['published_at'] is not None
    draft = client.post('/admin/blog/posts', json={'title': 'Draft thoughts', 'category': category}, headers=h).json()

    assert client.post(f"/blog/posts/{post['slug']}/view").json() == {'views': 1}
    assert client.post(f"/blog/posts/{post['slug']}/view").json() == {'views': 2}
    assert client.get(f"/blog/posts/{draft['slug']}").status_code == 404

    listing = client.get('/blog/posts', params={'category': category}).json()
    assert [p['id'] for p in listing['posts']] == [post['id']]
    assert 'content' not in listing['posts'][0]
    categories = {c['name']: c['count'] for c in client.get('/blog/categories').json()['categories']}
    assert categories[category] == 1


def test_inquiries(client, admin, headers):
    r = client.post('/inquiries', json={'name': 'Meera', 'email': 'meera@example.com',
                                        'message': 'Which universities accept a 6.5 band?', 'kind': 'UNIVERSITY'})
    assert r.status_code == 201
    inquiry_id = r.json()['id']
    assert client.post('/inquiries', json={'name': 'M', 'email': 'x@example.com', 'message': 'short'}).status_code == 422

    h = headers(admin)
    listing = client.get('/admin/inquiries', params={'kind': 'UNIVERSITY'}, headers=h).json()
    assert inquiry_id in [i['id'] for i in listing['inquiries']]
    r = client.patch(f'/admin/inquiries/{inquiry_id}', json={'status': 'RESOLVED', 'admin_notes': 'Sent list'}, headers=h)
    assert r.json()['status'] == 'RESOLVED'


def test_media_upload(client, admin, headers):
    h = headers(admin)
    r = client.post('/admin/media', files={'file': ('logo.png', _make_png(), 'image/png')}, headers=h)
    assert r.status_code == 201
    media = r.json()
    assert media['kind'] == 'image'
    assert media['url'] == f"/media/{media['stored_name']}"

    junk = client.post('/admin/media', files={'file': ('blob.bin', b"definitely not an image", 'application/octet-stream')},
                       headers=h)
    assert junk.status_code == 415

    assert client.delete(f"/admin/media/{media['id']}", headers=h).status_code == 200
    assert client.delete(f"/admin/media/{media['id']}", headers=h).status_code == 404


def test_homepage_content(client, admin, headers, make_course):
    h = headers(admin)
    r = client.post('/admin/content', json={'kind': 'testimonial', 'title': 'Ananya', 'body': 'Got into UCL!'},
                    headers=h)
    assert r.status_code == 201
    hidden = client.post('/admin/content', json={'kind': 'testimonial', 'title': 'Hidden', 'is_active': False},
                         headers=h).json()
    featured = make_course(is_featured=True)

    home = client.get('/homepage').json()
    assert set(home) == {'hero_slides', 'features', 'statistics', 'testimonials', 'partners', 'journey_steps',
                         'featured_courses', 'featured_tests'}
    titles = [t['title'] for t in home['testimonials']]
    assert 'Ananya' in titles and 'Hidden' not in titles
    assert featured['id'] in [c['id'] for c in home['featured_courses']]

    admin_view = client.get('/admin/content/testimonial', headers=h).json()['items']
    assert hidden['id'] in [b['id'] for b in admin_view]
